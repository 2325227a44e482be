"""Customer-facing tracking flags, all pure functions of the current status."""

from __future__ import annotations

from typing import Dict

from saraf.models import TrackingInfo, TransactionStatus

_NEXT_STEP: Dict[TransactionStatus, str] = {
    TransactionStatus.PENDING: "final confirmation and payout",
    TransactionStatus.COMPLETED: "transaction completed",
    TransactionStatus.CANCELLED: "transaction cancelled",
    TransactionStatus.WITHDRAWN: "funds withdrawn",
}

_ESTIMATED_TIME: Dict[TransactionStatus, str] = {
    TransactionStatus.PENDING: "2-4 hours",
    TransactionStatus.COMPLETED: "completed",
    TransactionStatus.CANCELLED: "cancelled",
    TransactionStatus.WITHDRAWN: "completed",
}

_PROGRESS: Dict[TransactionStatus, int] = {
    TransactionStatus.PENDING: 25,
    TransactionStatus.COMPLETED: 100,
    TransactionStatus.CANCELLED: 0,
    TransactionStatus.WITHDRAWN: 100,
}


def tracking_for(status: TransactionStatus) -> TrackingInfo:
    pending = status is TransactionStatus.PENDING
    return TrackingInfo(
        can_cancel=pending,
        can_complete=pending,
        estimated_time=_ESTIMATED_TIME[status],
        next_step=_NEXT_STEP[status],
        progress_percentage=_PROGRESS[status],
    )
