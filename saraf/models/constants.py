"""Domain constants and enumerations for validation."""

from enum import Enum
from typing import Dict, FrozenSet, Tuple

ANCHOR_CURRENCY = "USD"

# Currencies quoted by the portal (anchor excluded). Provider payloads are
# filtered down to this set.
SUPPORTED_CURRENCIES: Tuple[str, ...] = (
    "AFN", "EUR", "GBP", "PKR", "IRR", "CAD", "JPY", "AUD", "CHF", "CNY",
    "SAR", "AED", "INR", "TRY", "RUB", "KRW", "SGD", "HKD", "MXN", "BRL",
    "ZAR", "THB", "MYR", "IDR", "PHP", "VND", "EGP", "QAR", "KWD", "BHD",
    "OMR", "JOD", "LBP", "SYP", "IQD", "UZS", "KZT", "KGS", "TJS", "TMT",
)  # fmt: skip

CURRENCIES: FrozenSet[str] = frozenset((ANCHOR_CURRENCY,) + SUPPORTED_CURRENCIES)


class RateOrigin(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    CALCULATED = "calculated"
    FALLBACK = "fallback"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    WITHDRAWN = "WITHDRAWN"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


# PENDING is the only state with outgoing edges.
ALLOWED_TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {
            TransactionStatus.COMPLETED,
            TransactionStatus.CANCELLED,
            TransactionStatus.WITHDRAWN,
        }
    ),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
    TransactionStatus.WITHDRAWN: frozenset(),
}


class AuditAction(str, Enum):
    CREATED = "CREATED"
    STATUS_CHANGED = "STATUS_CHANGED"


HAWALA_TYPE = "HAWALA"
DEFAULT_COUNTRY = "Afghanistan"
DEFAULT_SENDER_CITY = "Kabul"
