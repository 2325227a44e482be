from __future__ import annotations

"""Hawala transaction lifecycle.

State graph: PENDING -> {COMPLETED, CANCELLED, WITHDRAWN}; terminal states
have no exits. Every mutation and its audit entry are written in one unit of
work, so a failed audit write leaves no trace of the mutation. Notifications
are queued after the commit and can never undo it.

Rate policy: the aggregated rate is authoritative. A caller may quote a
broker rate, which is honoured only within ``rate_tolerance_pct`` of the
aggregated rate; whichever rate is used is frozen on the transaction.
"""
import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from saraf.core.errors import (
    ConcurrentModification,
    InvalidTransition,
    NotFound,
    ReferenceCodeExhausted,
    UnsupportedPair,
    ValidationError,
)
from saraf.db.audit_trail import AuditHistory, AuditTrail
from saraf.db.notification_log import DeliveryLog
from saraf.db.transaction_store import DuplicateReference, TransactionStore
from saraf.models import (
    ALLOWED_TRANSITIONS,
    CURRENCIES,
    AuditAction,
    AuditEntry,
    HawalaCreateIn,
    HawalaListOut,
    HawalaStats,
    NotificationRecord,
    PartyInfo,
    TrackingOut,
    Transaction,
    TransactionStatus,
)
from saraf.models.constants import DEFAULT_SENDER_CITY
from saraf.services.notifications import (
    HAWALA_CREATED,
    NotificationDispatcher,
    is_valid_phone,
)
from saraf.services.rates.aggregator import RateAggregator
from .fees import FeePolicy, compute_settlement
from .reference import ReferenceCodeGenerator
from .tracking import tracking_for

logger = logging.getLogger("saraf.hawala")

DEFAULT_MAX_AMOUNT = 1_000_000
MAX_REFERENCE_ATTEMPTS = 5
DEFAULT_LIST_LIMIT = 50


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class HawalaLifecycle:
    def __init__(
        self,
        store: TransactionStore,
        audit: AuditTrail,
        rates: RateAggregator,
        references: ReferenceCodeGenerator,
        notifier: NotificationDispatcher,
        fee_policy: FeePolicy = FeePolicy(),
        max_amount: float = DEFAULT_MAX_AMOUNT,
        rate_tolerance_pct: float = 5.0,
        deliveries: Optional[DeliveryLog] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._store = store
        self._audit = audit
        self._rates = rates
        self._references = references
        self._notifier = notifier
        self._fee_policy = fee_policy
        self._max_amount = max_amount
        self._rate_tolerance = rate_tolerance_pct / 100
        self._now = now
        self._deliveries = deliveries

    # Validation ------------------------------------------------
    def _validate(self, req: HawalaCreateIn) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        for field in ("sender_name", "sender_phone", "receiver_name", "receiver_phone", "receiver_city"):
            if not _clean(getattr(req, field)):
                errors[field] = "field required"
        for field in ("sender_phone", "receiver_phone"):
            if field not in errors and not is_valid_phone(getattr(req, field)):
                errors[field] = "invalid phone number format"

        from_currency = (_clean(req.from_currency) or "").upper()
        to_currency = (_clean(req.to_currency) or "").upper()
        if not from_currency:
            errors["from_currency"] = "field required"
        elif from_currency not in CURRENCIES:
            errors["from_currency"] = "unsupported currency"
        if not to_currency:
            errors["to_currency"] = "field required"
        elif to_currency not in CURRENCIES:
            errors["to_currency"] = "unsupported currency"
        if from_currency and from_currency == to_currency:
            errors["to_currency"] = "must differ from from_currency"

        amount = req.from_amount
        if amount is None:
            errors["from_amount"] = "field required"
        elif not math.isfinite(amount) or not 0 < amount <= self._max_amount:
            errors["from_amount"] = f"must be greater than 0 and at most {self._max_amount:g}"

        # NaN compares false against every bound
        if req.rate is not None and (not math.isfinite(req.rate) or req.rate <= 0):
            errors["rate"] = "must be a positive number"
        if req.fee is not None and (not math.isfinite(req.fee) or req.fee < 0):
            errors["fee"] = "must be a non-negative number"
        return errors

    def _resolve_rate(self, req: HawalaCreateIn, from_currency: str, to_currency: str) -> float:
        try:
            market = self._rates.rate_for(from_currency, to_currency)
        except UnsupportedPair as e:
            raise ValidationError(e.fields) from e
        if req.rate is None:
            return market
        if abs(req.rate - market) / market > self._rate_tolerance:
            raise ValidationError(
                {
                    "rate": f"quoted rate {req.rate:g} deviates more than "
                    f"{self._rate_tolerance * 100:g}% from market rate {market:g}"
                }
            )
        return req.rate

    # Helpers ---------------------------------------------------
    def _audit_time(self, txn: Transaction) -> datetime:
        # keeps per-transaction audit order monotonic under clock skew
        return max(self._now(), txn.updated_at)

    def _notify(self, txn: Transaction, event: Optional[str] = None) -> None:
        try:
            self._notifier.dispatch(txn, event)
        except Exception:
            logger.exception(
                "notification failure after commit", extra={"transaction_id": txn.id}
            )

    # Operations ------------------------------------------------
    def create(self, req: HawalaCreateIn, actor_id: str) -> Transaction:
        errors = self._validate(req)
        if errors:
            raise ValidationError(errors)

        from_currency = req.from_currency.strip().upper()  # type: ignore[union-attr]
        to_currency = req.to_currency.strip().upper()  # type: ignore[union-attr]
        rate = self._resolve_rate(req, from_currency, to_currency)
        settlement = compute_settlement(req.from_amount, rate, self._fee_policy)  # type: ignore[arg-type]
        fee = settlement.fee
        if req.fee is not None:
            if req.fee < settlement.fee:
                raise ValidationError(
                    {"fee": f"must be at least the policy fee {settlement.fee:g}"}
                )
            fee = req.fee

        for attempt in range(1, MAX_REFERENCE_ATTEMPTS + 1):
            code = self._references.generate()
            if self._store.reference_exists(code):
                logger.warning("reference code collision on %s, regenerating", code)
                continue
            now = self._now()
            txn = Transaction(
                id=uuid.uuid4().hex,
                reference_code=code,
                status=TransactionStatus.PENDING,
                from_currency=from_currency,
                to_currency=to_currency,
                from_amount=settlement.from_amount,
                to_amount=settlement.to_amount,
                rate=settlement.rate,
                fee=fee,
                sender=PartyInfo(
                    name=_clean(req.sender_name),
                    phone=_clean(req.sender_phone),
                    city=_clean(req.sender_city) or DEFAULT_SENDER_CITY,
                ),
                receiver=PartyInfo(
                    name=_clean(req.receiver_name),
                    phone=_clean(req.receiver_phone),
                    city=_clean(req.receiver_city),
                ),
                notes=_clean(req.notes),
                created_by=actor_id,
                created_at=now,
                updated_at=now,
            )
            try:
                with self._store.atomic():
                    self._store.insert(txn)
                    self._audit.append(
                        AuditEntry(
                            transaction_id=txn.id,
                            action=AuditAction.CREATED,
                            to_status=TransactionStatus.PENDING,
                            actor_id=actor_id,
                            notes=txn.notes,
                            created_at=now,
                        )
                    )
            except DuplicateReference:
                logger.warning("reference code %s taken concurrently, regenerating", code)
                continue
            logger.info(
                "hawala created",
                extra={"transaction_id": txn.id, "reference_code": txn.reference_code},
            )
            self._notify(txn, HAWALA_CREATED)
            return txn
        raise ReferenceCodeExhausted(
            f"could not allocate a unique reference code after {MAX_REFERENCE_ATTEMPTS} attempts"
        )

    def transition(
        self,
        transaction_id: str,
        target: TransactionStatus,
        actor_id: str,
        notes: Optional[str] = None,
    ) -> Transaction:
        current = self._store.get(transaction_id)
        if current is None:
            raise NotFound(f"transaction {transaction_id} not found")
        if target not in ALLOWED_TRANSITIONS[current.status]:
            raise InvalidTransition(current.status.value, target.value)

        now = self._audit_time(current)
        completed_at = now if target is TransactionStatus.COMPLETED else None
        with self._store.atomic():
            updated = self._store.compare_and_set_status(
                transaction_id, current.status, target, completed_at, now
            )
            if updated is None:
                raise ConcurrentModification(
                    f"transaction {transaction_id} changed since it was read; reload and retry"
                )
            self._audit.append(
                AuditEntry(
                    transaction_id=transaction_id,
                    action=AuditAction.STATUS_CHANGED,
                    from_status=current.status,
                    to_status=target,
                    actor_id=actor_id,
                    notes=_clean(notes),
                    created_at=now,
                )
            )
        logger.info(
            "hawala %s -> %s",
            current.status.value,
            target.value,
            extra={"transaction_id": transaction_id, "reference_code": updated.reference_code},
        )
        self._notify(updated)
        return updated

    def get(self, transaction_id: str) -> Transaction:
        txn = self._store.get(transaction_id)
        if txn is None:
            raise NotFound(f"transaction {transaction_id} not found")
        return txn

    def history(self, transaction_id: str) -> AuditHistory:
        return self._audit.list_for(transaction_id)

    def track(self, reference_code: str) -> TrackingOut:
        code = (reference_code or "").strip().upper()
        txn = self._store.get_by_reference(code) if code else None
        if txn is None:
            raise NotFound(f"no hawala with reference code {reference_code!r}")
        return TrackingOut(
            transaction=txn,
            status_history=self.history(txn.id).to_list(),
            tracking=tracking_for(txn.status),
        )

    def stats(self) -> HawalaStats:
        counts = self._store.count_by_status()
        return HawalaStats(
            total=sum(counts.values()),
            pending=counts.get(TransactionStatus.PENDING.value, 0),
            completed=counts.get(TransactionStatus.COMPLETED.value, 0),
            cancelled=counts.get(TransactionStatus.CANCELLED.value, 0),
            withdrawn=counts.get(TransactionStatus.WITHDRAWN.value, 0),
        )

    def list_for(self, actor_id: str, limit: int = DEFAULT_LIST_LIMIT) -> HawalaListOut:
        transactions = self._store.list_for_actor(actor_id, limit)
        return HawalaListOut(transactions=transactions, total=len(transactions))

    def notifications(self, transaction_id: str) -> List[NotificationRecord]:
        self.get(transaction_id)
        if self._deliveries is None:
            return []
        return self._deliveries.list_for(transaction_id)
