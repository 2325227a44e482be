from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional

import pytest

from saraf.core.config import Settings
from saraf.core.errors import ProviderUnavailable
from saraf.db.audit_trail import MemoryAuditTrail, SqliteAuditTrail
from saraf.db.dal import Database
from saraf.db.memory import MemoryBackend
from saraf.db.migrate import apply_migrations
from saraf.db.notification_log import MemoryDeliveryLog, SqliteDeliveryLog
from saraf.db.rate_store import MemoryRateStore, SqliteRateStore
from saraf.db.transaction_store import MemoryTransactionStore, SqliteTransactionStore
from saraf.services.hawala.fees import FeePolicy
from saraf.services.hawala.lifecycle import HawalaLifecycle
from saraf.services.hawala.reference import ReferenceCodeGenerator
from saraf.services.notifications import (
    Notification,
    NotificationChannel,
    NotificationDispatcher,
)
from saraf.services.rates.aggregator import RateAggregator
from saraf.services.rates.base import RateSource
from saraf.services.rates.cache_service import RateCache
from saraf.services.rates.fallback import FallbackRateTable

BASE_QUOTES: Dict[str, float] = {"AFN": 70.5, "EUR": 0.9, "PKR": 280.0, "IRR": 42000.0}


class StubSource(RateSource):
    """Call-counting source: returns fixed quotes or raises."""

    def __init__(
        self,
        name: str = "primary",
        quotes: Optional[Dict[str, float]] = None,
        fail: bool = False,
        delay: float = 0.0,
    ):
        self.name = name
        self.provider = f"stub-{name}"
        self.quotes = dict(BASE_QUOTES if quotes is None else quotes)
        self.fail = fail
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def fetch_quotes(self) -> Dict[str, float]:
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise ProviderUnavailable(self.provider, "simulated outage")
        return dict(self.quotes)


class RecordingChannel(NotificationChannel):
    name = "recording"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Notification] = []
        self.attempts = 0
        self._lock = threading.Lock()

    def send(self, notification: Notification) -> None:
        with self._lock:
            self.attempts += 1
        if self.fail:
            raise RuntimeError("gateway down")
        with self._lock:
            self.sent.append(notification)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_aggregator(clock) -> Callable[..., RateAggregator]:
    def _make(sources, rate_store=None, ttl: float = 300, sample_size: int = 20):
        return RateAggregator(
            sources=sources,
            fallback=FallbackRateTable(),
            cache=RateCache(ttl_seconds=ttl, fallback_ttl_seconds=60, clock=clock),
            rate_store=rate_store,
            history_sample_size=sample_size,
        )

    return _make


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    """(TransactionStore, AuditTrail, RateStore, DeliveryLog) sharing one backend."""
    if request.param == "memory":
        backend = MemoryBackend()
        return (
            MemoryTransactionStore(backend),
            MemoryAuditTrail(backend),
            MemoryRateStore(backend),
            MemoryDeliveryLog(backend),
        )
    path = tmp_path / "lifecycle.sqlite3"
    apply_migrations(path)
    db = Database(path)
    return (
        SqliteTransactionStore(db),
        SqliteAuditTrail(db),
        SqliteRateStore(db),
        SqliteDeliveryLog(db),
    )


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def build_lifecycle(make_aggregator, channel):
    dispatchers: List[NotificationDispatcher] = []

    def _build(
        storage,
        audit=None,
        sources=None,
        notify_channel: Optional[NotificationChannel] = None,
        fee_policy: FeePolicy = FeePolicy(),
        references: Optional[ReferenceCodeGenerator] = None,
    ) -> HawalaLifecycle:
        store, default_audit, rate_store, deliveries = storage
        dispatcher = NotificationDispatcher(
            notify_channel or channel,
            max_attempts=2,
            sleep=lambda _: None,
            delivery_log=deliveries,
        )
        dispatchers.append(dispatcher)
        return HawalaLifecycle(
            store=store,
            audit=audit or default_audit,
            rates=make_aggregator(sources or [StubSource()], rate_store=rate_store),
            references=references or ReferenceCodeGenerator(),
            notifier=dispatcher,
            fee_policy=fee_policy,
            deliveries=deliveries,
        )

    yield _build
    for d in dispatchers:
        d.shutdown(wait=True)


@pytest.fixture
def memory_settings(tmp_path) -> Settings:
    settings = Settings(
        storage_backend="memory",
        data_dir=tmp_path,
        currencylayer_key=None,
        notification_gateway_url=None,
    )
    settings.init_post_load()
    return settings


@pytest.fixture
def sqlite_settings(tmp_path) -> Settings:
    settings = Settings(
        storage_backend="sqlite",
        data_dir=tmp_path,
        db_path=tmp_path / "api.sqlite3",
        currencylayer_key=None,
        notification_gateway_url=None,
    )
    settings.init_post_load()
    return settings
