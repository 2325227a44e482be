"""Service wiring.

Builds the rate engine, stores and lifecycle from Settings once per app so
tests can hand ``create_app`` an isolated Settings (temp DB, memory backend,
stub sources) without touching module-level singletons.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Optional, Sequence

from saraf.core.config import Settings
from saraf.db.audit_trail import AuditTrail, MemoryAuditTrail, SqliteAuditTrail
from saraf.db.dal import Database
from saraf.db.memory import MemoryBackend
from saraf.db.migrate import apply_migrations
from saraf.db.notification_log import DeliveryLog, MemoryDeliveryLog, SqliteDeliveryLog
from saraf.db.rate_store import MemoryRateStore, RateStore, SqliteRateStore
from saraf.db.transaction_store import (
    MemoryTransactionStore,
    SqliteTransactionStore,
    TransactionStore,
)
from saraf.services.hawala.fees import FeePolicy
from saraf.services.hawala.lifecycle import HawalaLifecycle
from saraf.services.hawala.reference import ReferenceCodeGenerator
from saraf.services.notifications import (
    LogNotificationChannel,
    NotificationChannel,
    NotificationDispatcher,
    WebhookNotificationChannel,
)
from saraf.services.rates.aggregator import RateAggregator
from saraf.services.rates.base import RateSource
from saraf.services.rates.cache_service import RateCache
from saraf.services.rates.fallback import FallbackRateTable
from saraf.services.rates.providers import make_rate_sources

logger = logging.getLogger("saraf.container")


@dataclass
class Services:
    settings: Settings
    backend: str
    store: TransactionStore
    audit: AuditTrail
    rate_store: RateStore
    deliveries: DeliveryLog
    aggregator: RateAggregator
    notifier: NotificationDispatcher
    lifecycle: HawalaLifecycle
    database: Optional[Database] = None

    def close(self) -> None:
        self.notifier.shutdown(wait=True)


def _memory_storage():
    backend = MemoryBackend()
    return (
        "memory",
        None,
        MemoryTransactionStore(backend),
        MemoryAuditTrail(backend),
        MemoryRateStore(backend),
        MemoryDeliveryLog(backend),
    )


def _build_storage(settings: Settings):
    if settings.storage_backend == "memory":
        return _memory_storage()
    try:
        apply_migrations(settings.db_path)  # type: ignore[arg-type]
    except (sqlite3.Error, OSError):
        if not settings.storage_fallback_to_memory:
            raise
        logger.exception(
            "could not open sqlite database at %s; falling back to in-memory storage",
            settings.db_path,
        )
        return _memory_storage()
    db = Database(settings.db_path)  # type: ignore[arg-type]
    return (
        "sqlite",
        db,
        SqliteTransactionStore(db),
        SqliteAuditTrail(db),
        SqliteRateStore(db),
        SqliteDeliveryLog(db),
    )


def _build_channel(settings: Settings) -> NotificationChannel:
    if settings.notification_gateway_url:
        return WebhookNotificationChannel(
            str(settings.notification_gateway_url),
            timeout=settings.notification_timeout_seconds,
        )
    return LogNotificationChannel()


def build_services(
    settings: Settings,
    sources: Optional[Sequence[RateSource]] = None,
    channel: Optional[NotificationChannel] = None,
) -> Services:
    backend, db, store, audit, rate_store, deliveries = _build_storage(settings)

    rate_sources = list(sources) if sources is not None else make_rate_sources(settings)
    # a refill waiter never outlives every source timing out in turn
    wait_timeout = settings.http_timeout_seconds * max(1, len(rate_sources)) + 5
    aggregator = RateAggregator(
        sources=rate_sources,
        fallback=FallbackRateTable(anchor=settings.anchor_currency),
        cache=RateCache(
            ttl_seconds=settings.rates_cache_ttl_seconds,
            fallback_ttl_seconds=settings.rates_fallback_ttl_seconds,
            wait_timeout=wait_timeout,
        ),
        rate_store=rate_store,
        history_sample_size=settings.rates_history_sample_size,
        anchor=settings.anchor_currency,
    )
    notifier = NotificationDispatcher(
        channel or _build_channel(settings),
        max_attempts=settings.notification_max_attempts,
        workers=settings.notification_workers,
        delivery_log=deliveries,
    )
    lifecycle = HawalaLifecycle(
        store=store,
        audit=audit,
        rates=aggregator,
        references=ReferenceCodeGenerator(),
        notifier=notifier,
        fee_policy=FeePolicy(percent=settings.fee_percent, floor=settings.fee_floor),
        max_amount=settings.hawala_max_amount,
        rate_tolerance_pct=settings.hawala_rate_tolerance_pct,
        deliveries=deliveries,
    )
    logger.info("services ready (storage=%s, sources=%d)", backend, len(rate_sources))
    return Services(
        settings=settings,
        backend=backend,
        store=store,
        audit=audit,
        rate_store=rate_store,
        deliveries=deliveries,
        aggregator=aggregator,
        notifier=notifier,
        lifecycle=lifecycle,
        database=db,
    )
