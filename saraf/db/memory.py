"""In-process storage backend.

Backs the in-memory TransactionStore, AuditTrail, RateStore and
DeliveryLog. Used by the test-suite and selectable at runtime
(``storage_backend=memory``) when no durable database is available.
Nothing survives a restart.
"""

from __future__ import annotations

from contextlib import contextmanager
import itertools
import threading
from typing import Dict, Iterator, List, Tuple

from saraf.models import AuditEntry, MarketSample, NotificationRecord, Transaction


class MemoryBackend:
    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.transactions: Dict[str, Transaction] = {}
        self.references: Dict[str, str] = {}  # reference_code -> id
        self.audit: Dict[str, List[AuditEntry]] = {}
        self.market: Dict[Tuple[str, str], MarketSample] = {}
        # outside atomic() snapshots; deliveries are never rolled back
        self.deliveries: Dict[str, List[NotificationRecord]] = {}
        self.audit_ids = itertools.count(1)
        self.delivery_ids = itertools.count(1)
        self._depth = 0

    @contextmanager
    def atomic(self) -> Iterator["MemoryBackend"]:
        """Serialize writers and restore the previous state on error."""
        with self.lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return
            saved = (
                dict(self.transactions),
                dict(self.references),
                {k: list(v) for k, v in self.audit.items()},
            )
            self._depth = 1
            try:
                yield self
            except BaseException:
                self.transactions, self.references, self.audit = saved
                raise
            finally:
                self._depth = 0
