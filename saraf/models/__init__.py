"""Pydantic and dataclass domain models for the saraf exchange core."""

from .constants import (
    ALLOWED_TRANSITIONS,
    ANCHOR_CURRENCY,
    CURRENCIES,
    SUPPORTED_CURRENCIES,
    AuditAction,
    RateOrigin,
    TransactionStatus,
)  # re-export
from .hawala import (
    AuditEntry,
    HawalaCreateIn,
    HawalaCreateOut,
    HawalaListOut,
    HawalaStats,
    NotificationRecord,
    PartyInfo,
    StatusUpdateIn,
    TrackingInfo,
    TrackingOut,
    Transaction,
)
from .rates import ConversionOut, ExchangeRate, MarketSample, RateOut, RateSnapshot

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ANCHOR_CURRENCY",
    "CURRENCIES",
    "SUPPORTED_CURRENCIES",
    "AuditAction",
    "RateOrigin",
    "TransactionStatus",
    "AuditEntry",
    "HawalaCreateIn",
    "HawalaCreateOut",
    "HawalaListOut",
    "HawalaStats",
    "NotificationRecord",
    "PartyInfo",
    "StatusUpdateIn",
    "TrackingInfo",
    "TrackingOut",
    "Transaction",
    "ConversionOut",
    "ExchangeRate",
    "MarketSample",
    "RateOut",
    "RateSnapshot",
]
