from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .constants import (
    AuditAction,
    DEFAULT_COUNTRY,
    HAWALA_TYPE,
    TransactionStatus,
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PartyInfo(_CamelModel):
    name: str
    phone: str
    city: Optional[str] = None
    country: str = DEFAULT_COUNTRY


class Transaction(_CamelModel):
    id: str
    reference_code: str
    type: str = HAWALA_TYPE
    status: TransactionStatus = TransactionStatus.PENDING
    from_currency: str
    to_currency: str
    from_amount: float = Field(..., gt=0)
    to_amount: float
    rate: float = Field(..., gt=0)
    fee: float = Field(0.0, ge=0)
    sender: PartyInfo
    receiver: PartyInfo
    notes: Optional[str] = None
    created_by: str
    created_at: datetime
    completed_at: Optional[datetime] = None
    updated_at: datetime

    def recipients(self) -> List[str]:
        return [p for p in (self.sender.phone, self.receiver.phone) if p]


class AuditEntry(_CamelModel):
    id: Optional[int] = None  # assigned by the trail on append
    transaction_id: str
    action: AuditAction
    from_status: Optional[TransactionStatus] = None
    to_status: Optional[TransactionStatus] = None
    actor_id: str
    notes: Optional[str] = None
    created_at: datetime


# Request / response payloads ----------------------------------------------


class HawalaCreateIn(_CamelModel):
    """Creation request. Required-field and range rules live in the lifecycle
    so that every failure reports the offending field the same way."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    sender_name: Optional[str] = None
    sender_phone: Optional[str] = None
    sender_city: Optional[str] = None
    receiver_name: Optional[str] = None
    receiver_phone: Optional[str] = None
    receiver_city: Optional[str] = None
    from_currency: Optional[str] = None
    to_currency: Optional[str] = None
    from_amount: Optional[float] = None
    rate: Optional[float] = None
    fee: Optional[float] = None
    notes: Optional[str] = None


class HawalaCreateOut(_CamelModel):
    reference_code: str
    transaction_id: str
    status: TransactionStatus
    from_amount: float
    to_amount: float


class StatusUpdateIn(_CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    transaction_id: str = Field(..., min_length=1)
    status: TransactionStatus
    notes: Optional[str] = Field(None, max_length=1000)


class TrackingInfo(_CamelModel):
    can_cancel: bool
    can_complete: bool
    estimated_time: str
    next_step: str
    progress_percentage: int


class TrackingOut(_CamelModel):
    transaction: Transaction
    status_history: List[AuditEntry]
    tracking: TrackingInfo


class HawalaStats(_CamelModel):
    total: int
    pending: int
    completed: int
    cancelled: int
    withdrawn: int


class HawalaListOut(_CamelModel):
    transactions: List[Transaction]
    total: int


class NotificationRecord(_CamelModel):
    """Outcome of one delivery (all attempts) to one counterparty."""

    id: Optional[int] = None
    transaction_id: str
    reference_code: str
    event: str
    recipient: str
    channel: str
    success: bool
    attempts: int
    error: Optional[str] = None
    created_at: datetime
