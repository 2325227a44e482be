from __future__ import annotations

"""Best-effort status notifications to hawala counterparties.

``NotificationDispatcher.dispatch`` renders the message for an event and
hands one delivery per recipient to a small thread pool, returning at once.
Each delivery gets a bounded number of attempts with exponential backoff;
the final failure is logged and dropped. When a DeliveryLog is attached the
outcome of every delivery is recorded there.
"""
import logging
import re
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from saraf.core.errors import NotificationFailure
from saraf.db.notification_log import DeliveryLog
from saraf.models import NotificationRecord, Transaction, TransactionStatus
from saraf.services.http_client import HttpError, post_json

logger = logging.getLogger("saraf.notifications")

HAWALA_CREATED = "HAWALA_CREATED"
TRANSACTION_COMPLETED = "TRANSACTION_COMPLETED"
TRANSACTION_CANCELLED = "TRANSACTION_CANCELLED"
TRANSACTION_WITHDRAWN = "TRANSACTION_WITHDRAWN"

EVENT_FOR_STATUS: Dict[TransactionStatus, str] = {
    TransactionStatus.PENDING: HAWALA_CREATED,
    TransactionStatus.COMPLETED: TRANSACTION_COMPLETED,
    TransactionStatus.CANCELLED: TRANSACTION_CANCELLED,
    TransactionStatus.WITHDRAWN: TRANSACTION_WITHDRAWN,
}

_TEMPLATES: Dict[str, str] = {
    HAWALA_CREATED: "Hawala {ref} for {amount} {currency} has been created.",
    TRANSACTION_COMPLETED: "Hawala {ref} for {amount} {currency} has been paid out.",
    TRANSACTION_CANCELLED: "Hawala {ref} for {amount} {currency} has been cancelled.",
    TRANSACTION_WITHDRAWN: "Hawala {ref} for {amount} {currency} has been withdrawn.",
}


@dataclass(frozen=True)
class Notification:
    recipient: str
    message: str
    transaction_id: str
    reference_code: str
    event: str


PHONE_RE = re.compile(r"^\+?[1-9]\d{7,14}$")


def normalize_phone(phone: str) -> str:
    """Strip spaces, dashes and brackets; keep digits and a leading plus."""
    return re.sub(r"[^\d+]", "", phone or "")


def is_valid_phone(phone: Optional[str]) -> bool:
    return bool(PHONE_RE.match(normalize_phone(phone or "")))


def render_message(txn: Transaction, event: str) -> str:
    return _TEMPLATES[event].format(
        ref=txn.reference_code, amount=f"{txn.from_amount:g}", currency=txn.from_currency
    )


class NotificationChannel(ABC):
    name: str = "channel"

    @abstractmethod
    def send(self, notification: Notification) -> None:
        """Deliver or raise NotificationFailure."""


class LogNotificationChannel(NotificationChannel):
    name = "log"

    def send(self, notification: Notification) -> None:  # type: ignore[override]
        logger.info(
            "notification to %s: %s",
            notification.recipient,
            notification.message,
            extra={
                "transaction_id": notification.transaction_id,
                "reference_code": notification.reference_code,
            },
        )


class WebhookNotificationChannel(NotificationChannel):
    """POSTs each notification as JSON to an SMS gateway endpoint."""

    name = "webhook"

    def __init__(self, url: str, timeout: float = 5.0):
        self._url = url
        self._timeout = timeout

    def send(self, notification: Notification) -> None:  # type: ignore[override]
        try:
            post_json(
                self._url,
                {
                    "type": "SMS",
                    "recipient": notification.recipient,
                    "message": notification.message,
                    "transactionId": notification.transaction_id,
                    "referenceCode": notification.reference_code,
                    "event": notification.event,
                },
                timeout=self._timeout,
                retries=0,
            )
        except HttpError as e:
            raise NotificationFailure(str(e)) from e


class NotificationDispatcher:
    def __init__(
        self,
        channel: NotificationChannel,
        max_attempts: int = 2,
        backoff_seconds: float = 0.5,
        workers: int = 4,
        sleep: Callable[[float], None] = time.sleep,
        delivery_log: Optional[DeliveryLog] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._channel = channel
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds
        self._sleep = sleep
        self._delivery_log = delivery_log
        self._now = now
        self._executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="notify"
        )

    def _record(
        self, notification: Notification, success: bool, attempts: int, error: Optional[str]
    ) -> None:
        if self._delivery_log is None:
            return
        try:
            self._delivery_log.record(
                NotificationRecord(
                    transaction_id=notification.transaction_id,
                    reference_code=notification.reference_code,
                    event=notification.event,
                    recipient=notification.recipient,
                    channel=self._channel.name,
                    success=success,
                    attempts=attempts,
                    error=error,
                    created_at=self._now(),
                )
            )
        except Exception:
            logger.exception(
                "could not record notification delivery",
                extra={"transaction_id": notification.transaction_id},
            )

    def _deliver(self, notification: Notification) -> bool:
        if not is_valid_phone(notification.recipient):
            logger.error(
                "notification failure: invalid phone number %r",
                notification.recipient,
                extra={"transaction_id": notification.transaction_id},
            )
            self._record(notification, False, 0, "invalid phone number format")
            return False
        error: Optional[str] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                self._channel.send(notification)
                self._record(notification, True, attempt, None)
                return True
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.warning(
                    "notification attempt %d/%d failed: %s",
                    attempt,
                    self._max_attempts,
                    e,
                    extra={"transaction_id": notification.transaction_id, "attempt": attempt},
                )
                if attempt < self._max_attempts:
                    self._sleep(self._backoff * (2 ** (attempt - 1)))
        logger.error(
            "notification failure: giving up on %s for %s",
            notification.event,
            notification.recipient,
            extra={
                "transaction_id": notification.transaction_id,
                "reference_code": notification.reference_code,
            },
        )
        self._record(notification, False, self._max_attempts, error)
        return False

    def dispatch(self, txn: Transaction, event: Optional[str] = None) -> List[Future]:
        """Queue deliveries for every counterparty phone; never raises."""
        try:
            event = event or EVENT_FOR_STATUS[txn.status]
            message = render_message(txn, event)
            return [
                self._executor.submit(
                    self._deliver,
                    Notification(
                        recipient=normalize_phone(phone),
                        message=message,
                        transaction_id=txn.id,
                        reference_code=txn.reference_code,
                        event=event,
                    ),
                )
                for phone in txn.recipients()
            ]
        except Exception:
            logger.exception(
                "notification failure: could not queue notifications",
                extra={"transaction_id": txn.id},
            )
            return []

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
