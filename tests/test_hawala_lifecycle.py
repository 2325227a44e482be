import re
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from saraf.core.errors import (
    AuditWriteFailure,
    ConcurrentModification,
    InvalidTransition,
    NotFound,
    ReferenceCodeExhausted,
    ValidationError,
)
from saraf.db.audit_trail import AuditTrail
from saraf.models import AuditAction, HawalaCreateIn, TransactionStatus
from saraf.services.hawala.fees import FeePolicy
from saraf.services.hawala.reference import ReferenceCodeGenerator, to_base36
from saraf.services.hawala.tracking import tracking_for

from conftest import RecordingChannel, StubSource

ACTOR = "teller-7"


def make_request(**overrides) -> HawalaCreateIn:
    data = dict(
        sender_name="Ahmad Karimi",
        sender_phone="+93700111222",
        receiver_name="Zahra Rahimi",
        receiver_phone="+93799333444",
        receiver_city="Herat",
        from_currency="USD",
        to_currency="AFN",
        from_amount=1000,
    )
    data.update(overrides)
    return HawalaCreateIn(**data)


class FailingAudit(AuditTrail):
    """Delegates reads, refuses every write."""

    def __init__(self, inner: AuditTrail, fail_after: int = 0):
        self._inner = inner
        self._remaining = fail_after

    def append(self, entry):
        if self._remaining <= 0:
            raise AuditWriteFailure("audit store offline")
        self._remaining -= 1
        return self._inner.append(entry)

    def list_for(self, transaction_id):
        return self._inner.list_for(transaction_id)


class FixedCodes(ReferenceCodeGenerator):
    def __init__(self, codes):
        super().__init__()
        self._codes = list(codes)

    def generate(self) -> str:
        return self._codes.pop(0)


# Creation --------------------------------------------------------------


def test_create_uses_market_rate(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    assert txn.status is TransactionStatus.PENDING
    assert txn.rate == 70.5
    assert txn.to_amount == 70500.0
    assert txn.sender.city == "Kabul"
    assert txn.receiver.country == "Afghanistan"
    assert txn.created_by == ACTOR

    stored = lifecycle.get(txn.id)
    assert stored.reference_code == txn.reference_code
    assert stored.to_amount == 70500.0


def test_create_honours_quoted_rate_within_tolerance(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    txn = lifecycle.create(make_request(rate=71.0), actor_id=ACTOR)
    assert txn.rate == 71.0
    assert txn.to_amount == 71000.0


def test_create_rejects_quoted_rate_outside_tolerance(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    with pytest.raises(ValidationError) as exc:
        lifecycle.create(make_request(rate=80.0), actor_id=ACTOR)
    assert "rate" in exc.value.fields


@pytest.mark.parametrize("amount", [0, -5, 1_000_001])
def test_create_rejects_amount_out_of_range(storage, build_lifecycle, amount):
    lifecycle = build_lifecycle(storage)
    with pytest.raises(ValidationError) as exc:
        lifecycle.create(make_request(from_amount=amount), actor_id=ACTOR)
    assert set(exc.value.fields) == {"from_amount"}
    assert lifecycle.stats().total == 0


def test_create_accepts_max_amount(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    txn = lifecycle.create(make_request(from_amount=1_000_000), actor_id=ACTOR)
    assert txn.to_amount == 70_500_000.0


@pytest.mark.parametrize(
    "field, value",
    [
        ("rate", float("nan")),
        ("rate", float("inf")),
        ("fee", float("nan")),
        ("fee", float("inf")),
        ("from_amount", float("nan")),
        ("from_amount", float("inf")),
    ],
)
def test_create_rejects_non_finite_numbers(storage, build_lifecycle, field, value):
    lifecycle = build_lifecycle(storage)
    with pytest.raises(ValidationError) as exc:
        lifecycle.create(make_request(**{field: value}), actor_id=ACTOR)
    assert field in exc.value.fields
    assert lifecycle.stats().total == 0


@pytest.mark.parametrize("phone", ["12345", "+0700111222", "call me", "+9370011122233344"])
def test_create_rejects_malformed_phone(storage, build_lifecycle, phone):
    lifecycle = build_lifecycle(storage)
    with pytest.raises(ValidationError) as exc:
        lifecycle.create(make_request(receiver_phone=phone), actor_id=ACTOR)
    assert set(exc.value.fields) == {"receiver_phone"}


def test_create_accepts_formatted_phone(storage, build_lifecycle, channel):
    lifecycle = build_lifecycle(storage)
    txn = lifecycle.create(make_request(sender_phone="+93 (700) 111-222"), actor_id=ACTOR)
    lifecycle._notifier.shutdown(wait=True)
    assert txn.sender.phone == "+93 (700) 111-222"
    assert {n.recipient for n in channel.sent} == {"+93700111222", "+93799333444"}


def test_create_reports_every_missing_field(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    with pytest.raises(ValidationError) as exc:
        lifecycle.create(HawalaCreateIn(sender_name="  "), actor_id=ACTOR)
    assert {
        "sender_name",
        "sender_phone",
        "receiver_name",
        "receiver_phone",
        "receiver_city",
        "from_currency",
        "to_currency",
        "from_amount",
    } <= set(exc.value.fields)


def test_create_rejects_same_and_unknown_currencies(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    with pytest.raises(ValidationError) as exc:
        lifecycle.create(make_request(to_currency="usd"), actor_id=ACTOR)
    assert "to_currency" in exc.value.fields
    with pytest.raises(ValidationError) as exc:
        lifecycle.create(make_request(from_currency="ABC"), actor_id=ACTOR)
    assert "from_currency" in exc.value.fields


def test_create_rejects_pair_without_rate(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    with pytest.raises(ValidationError) as exc:
        lifecycle.create(make_request(to_currency="GBP"), actor_id=ACTOR)
    assert "currency_pair" in exc.value.fields


def test_fee_policy_and_client_fee(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage, fee_policy=FeePolicy(percent=1.5, floor=5))
    assert lifecycle.create(make_request(), actor_id=ACTOR).fee == 15.0
    assert lifecycle.create(make_request(from_amount=100), actor_id=ACTOR).fee == 5.0
    assert lifecycle.create(make_request(fee=20), actor_id=ACTOR).fee == 20
    with pytest.raises(ValidationError) as exc:
        lifecycle.create(make_request(fee=1), actor_id=ACTOR)
    assert "fee" in exc.value.fields


def test_create_works_on_fallback_rates(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage, sources=[StubSource(fail=True)])
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    assert txn.rate == 70.85
    assert txn.to_amount == 70850.0


def test_reference_collision_regenerates(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage, references=FixedCodes(["HWAAA1", "HWAAA1", "HWBBB2"]))
    first = lifecycle.create(make_request(), actor_id=ACTOR)
    second = lifecycle.create(make_request(), actor_id=ACTOR)
    assert first.reference_code == "HWAAA1"
    assert second.reference_code == "HWBBB2"


def test_reference_exhaustion(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage, references=FixedCodes(["HWDUP"] * 6))
    lifecycle.create(make_request(), actor_id=ACTOR)
    with pytest.raises(ReferenceCodeExhausted):
        lifecycle.create(make_request(), actor_id=ACTOR)


# Transitions -----------------------------------------------------------


@pytest.mark.parametrize(
    "target",
    [TransactionStatus.COMPLETED, TransactionStatus.CANCELLED, TransactionStatus.WITHDRAWN],
)
def test_pending_moves_to_every_terminal_state(storage, build_lifecycle, target):
    lifecycle = build_lifecycle(storage)
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    updated = lifecycle.transition(txn.id, target, actor_id="branch-herat")
    assert updated.status is target
    assert (updated.completed_at is not None) == (target is TransactionStatus.COMPLETED)
    assert lifecycle.get(txn.id).status is target


@pytest.mark.parametrize(
    "terminal",
    [TransactionStatus.COMPLETED, TransactionStatus.CANCELLED, TransactionStatus.WITHDRAWN],
)
def test_terminal_states_have_no_exits(storage, build_lifecycle, terminal):
    lifecycle = build_lifecycle(storage)
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    lifecycle.transition(txn.id, terminal, actor_id=ACTOR)
    for target in TransactionStatus:
        with pytest.raises(InvalidTransition):
            lifecycle.transition(txn.id, target, actor_id=ACTOR)
    assert len(lifecycle.history(txn.id).to_list()) == 2


def test_pending_to_pending_is_rejected(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    with pytest.raises(InvalidTransition):
        lifecycle.transition(txn.id, TransactionStatus.PENDING, actor_id=ACTOR)


def test_transition_unknown_transaction(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    with pytest.raises(NotFound):
        lifecycle.transition("missing", TransactionStatus.COMPLETED, actor_id=ACTOR)


def test_concurrent_transitions_single_winner(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    barrier = threading.Barrier(2)
    outcomes = {}

    def attempt(target):
        barrier.wait(5)
        try:
            outcomes[target] = lifecycle.transition(txn.id, target, actor_id=ACTOR)
        except (ConcurrentModification, InvalidTransition) as e:
            outcomes[target] = e

    threads = [
        threading.Thread(target=attempt, args=(t,))
        for t in (TransactionStatus.COMPLETED, TransactionStatus.CANCELLED)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    winners = [v for v in outcomes.values() if not isinstance(v, Exception)]
    losers = [v for v in outcomes.values() if isinstance(v, Exception)]
    assert len(winners) == 1 and len(losers) == 1
    final = lifecycle.get(txn.id)
    assert final.status is winners[0].status
    history = lifecycle.history(txn.id).to_list()
    assert [e.to_status for e in history] == [TransactionStatus.PENDING, final.status]


def test_stale_read_raises_concurrent_modification(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    store = storage[0]
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    stale = store.get(txn.id)
    lifecycle.transition(txn.id, TransactionStatus.CANCELLED, actor_id=ACTOR)

    original_get = store.get
    store.get = lambda _id: stale
    try:
        with pytest.raises(ConcurrentModification) as exc:
            lifecycle.transition(txn.id, TransactionStatus.COMPLETED, actor_id=ACTOR)
    finally:
        store.get = original_get
    assert exc.value.retryable is True
    assert lifecycle.get(txn.id).status is TransactionStatus.CANCELLED


# Audit -----------------------------------------------------------------


def test_audit_history_is_ordered(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    txn = lifecycle.create(make_request(notes="first hawala"), actor_id=ACTOR)
    lifecycle.transition(txn.id, TransactionStatus.COMPLETED, actor_id="payout-desk", notes="paid")

    history = lifecycle.history(txn.id)
    entries = history.to_list()
    assert [e.action for e in entries] == [AuditAction.CREATED, AuditAction.STATUS_CHANGED]
    assert entries[0].from_status is None
    assert entries[1].from_status is TransactionStatus.PENDING
    assert entries[1].to_status is TransactionStatus.COMPLETED
    assert entries[1].actor_id == "payout-desk"
    assert entries[1].notes == "paid"
    assert entries[0].created_at <= entries[1].created_at
    # restartable
    assert [e.id for e in history] == [e.id for e in entries]


def test_audit_order_survives_clock_skew(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    lifecycle._now = lambda: datetime.now(timezone.utc) - timedelta(hours=1)
    lifecycle.transition(txn.id, TransactionStatus.WITHDRAWN, actor_id=ACTOR)
    entries = lifecycle.history(txn.id).to_list()
    assert [e.action for e in entries] == [AuditAction.CREATED, AuditAction.STATUS_CHANGED]


def test_audit_failure_rolls_back_create(storage, build_lifecycle):
    store, audit, _, _ = storage
    lifecycle = build_lifecycle(storage, audit=FailingAudit(audit))
    with pytest.raises(AuditWriteFailure):
        lifecycle.create(make_request(), actor_id=ACTOR)
    assert store.count_by_status() == {}


def test_audit_failure_rolls_back_transition(storage, build_lifecycle):
    store, audit, _, _ = storage
    lifecycle = build_lifecycle(storage, audit=FailingAudit(audit, fail_after=1))
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    with pytest.raises(AuditWriteFailure):
        lifecycle.transition(txn.id, TransactionStatus.COMPLETED, actor_id=ACTOR)
    current = store.get(txn.id)
    assert current.status is TransactionStatus.PENDING
    assert current.completed_at is None
    assert len(lifecycle.history(txn.id).to_list()) == 1


# Tracking and stats ----------------------------------------------------


def test_track_by_reference_code(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    out = lifecycle.track(f"  {txn.reference_code.lower()} ")
    assert out.transaction.id == txn.id
    assert out.tracking.can_cancel and out.tracking.can_complete
    assert out.tracking.progress_percentage == 25
    assert len(out.status_history) == 1

    lifecycle.transition(txn.id, TransactionStatus.COMPLETED, actor_id=ACTOR)
    out = lifecycle.track(txn.reference_code)
    assert not out.tracking.can_cancel and not out.tracking.can_complete
    assert out.tracking.progress_percentage == 100

    with pytest.raises(NotFound):
        lifecycle.track("HWNOPE")


def test_tracking_flags_per_status():
    assert tracking_for(TransactionStatus.PENDING).estimated_time == "2-4 hours"
    cancelled = tracking_for(TransactionStatus.CANCELLED)
    assert cancelled.progress_percentage == 0
    assert cancelled.next_step == "transaction cancelled"
    withdrawn = tracking_for(TransactionStatus.WITHDRAWN)
    assert (withdrawn.can_cancel, withdrawn.can_complete) == (False, False)
    assert withdrawn.estimated_time == "completed"


def test_stats_counts_by_status(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    ids = [lifecycle.create(make_request(), actor_id=ACTOR).id for _ in range(4)]
    lifecycle.transition(ids[0], TransactionStatus.COMPLETED, actor_id=ACTOR)
    lifecycle.transition(ids[1], TransactionStatus.CANCELLED, actor_id=ACTOR)
    stats = lifecycle.stats()
    assert (stats.total, stats.pending, stats.completed, stats.cancelled, stats.withdrawn) == (
        4,
        2,
        1,
        1,
        0,
    )


# Notifications ---------------------------------------------------------


def test_notifications_sent_to_both_parties(storage, build_lifecycle, channel):
    lifecycle = build_lifecycle(storage)
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    lifecycle.transition(txn.id, TransactionStatus.COMPLETED, actor_id=ACTOR)
    lifecycle._notifier.shutdown(wait=True)

    events = sorted((n.event, n.recipient) for n in channel.sent)
    assert events == [
        ("HAWALA_CREATED", "+93700111222"),
        ("HAWALA_CREATED", "+93799333444"),
        ("TRANSACTION_COMPLETED", "+93700111222"),
        ("TRANSACTION_COMPLETED", "+93799333444"),
    ]
    assert all(txn.reference_code in n.message for n in channel.sent)


def test_notification_failure_does_not_undo_commit(storage, build_lifecycle):
    failing = RecordingChannel(fail=True)
    lifecycle = build_lifecycle(storage, notify_channel=failing)
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    updated = lifecycle.transition(txn.id, TransactionStatus.CANCELLED, actor_id=ACTOR)
    lifecycle._notifier.shutdown(wait=True)

    assert updated.status is TransactionStatus.CANCELLED
    assert lifecycle.get(txn.id).status is TransactionStatus.CANCELLED
    # 2 events x 2 recipients x 2 attempts
    assert failing.attempts == 8


def test_dispatch_failure_is_swallowed(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)

    def explode(*args, **kwargs):
        raise RuntimeError("executor closed")

    lifecycle._notifier.dispatch = explode
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    assert lifecycle.get(txn.id).status is TransactionStatus.PENDING


def test_delivery_outcomes_are_recorded(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    lifecycle.transition(txn.id, TransactionStatus.COMPLETED, actor_id=ACTOR)
    lifecycle._notifier.shutdown(wait=True)

    records = lifecycle.notifications(txn.id)
    assert sorted((r.event, r.recipient) for r in records) == [
        ("HAWALA_CREATED", "+93700111222"),
        ("HAWALA_CREATED", "+93799333444"),
        ("TRANSACTION_COMPLETED", "+93700111222"),
        ("TRANSACTION_COMPLETED", "+93799333444"),
    ]
    assert all(r.success and r.attempts == 1 and r.error is None for r in records)
    assert {r.channel for r in records} == {"recording"}
    assert {r.reference_code for r in records} == {txn.reference_code}


def test_failed_deliveries_are_recorded(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage, notify_channel=RecordingChannel(fail=True))
    txn = lifecycle.create(make_request(), actor_id=ACTOR)
    lifecycle._notifier.shutdown(wait=True)

    records = lifecycle.notifications(txn.id)
    assert len(records) == 2
    assert all(not r.success for r in records)
    assert all(r.attempts == 2 and r.error == "gateway down" for r in records)
    # delivery records stay out of the status history
    assert [e.action for e in lifecycle.history(txn.id)] == [AuditAction.CREATED]


def test_notifications_for_unknown_transaction(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    with pytest.raises(NotFound):
        lifecycle.notifications("missing")


# Listing ---------------------------------------------------------------


def test_list_for_actor_newest_first(storage, build_lifecycle):
    lifecycle = build_lifecycle(storage)
    mine = [lifecycle.create(make_request(from_amount=a), actor_id=ACTOR) for a in (10, 20, 30)]
    lifecycle.create(make_request(), actor_id="teller-9")

    listing = lifecycle.list_for(ACTOR)
    assert listing.total == 3
    assert [t.id for t in listing.transactions] == [t.id for t in reversed(mine)]
    assert all(t.created_by == ACTOR for t in listing.transactions)

    limited = lifecycle.list_for(ACTOR, limit=2)
    assert [t.from_amount for t in limited.transactions] == [30, 20]
    assert lifecycle.list_for("nobody").total == 0


# Reference codes -------------------------------------------------------

CODE_RE = re.compile(r"^HW[0-9A-Z]+$")


def test_reference_codes_unique_and_well_formed():
    gen = ReferenceCodeGenerator()
    codes = [gen.generate() for _ in range(10_000)]
    assert len(set(codes)) == len(codes)
    assert all(CODE_RE.match(c) for c in codes)


def test_reference_codes_unique_under_concurrent_load():
    gen = ReferenceCodeGenerator()

    def batch(_):
        return [gen.generate() for _ in range(500)]

    with ThreadPoolExecutor(max_workers=16) as pool:
        codes = [c for chunk in pool.map(batch, range(16)) for c in chunk]
    assert len(codes) == 8000
    assert len(set(codes)) == len(codes)


def test_reference_codes_survive_clock_going_backwards():
    ticks = iter([5000, 5000, 4000, 6000])
    gen = ReferenceCodeGenerator(clock_ms=lambda: next(ticks))
    stamps = [gen.generate()[2:-4] for _ in range(4)]
    assert stamps == [to_base36(5000), to_base36(5001), to_base36(5002), to_base36(6000)]


def test_to_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "Z"
    assert to_base36(36) == "10"
    with pytest.raises(ValueError):
        to_base36(-1)
