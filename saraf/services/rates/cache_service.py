from __future__ import annotations

"""Time-bounded rate snapshot cache with single-flight refill.

Design:
    - Holds exactly one RateSnapshot plus the monotonic time it was stored.
      Snapshots are replaced wholesale, never patched.
    - Live snapshots live for ``ttl_seconds``; fallback snapshots for the
      (shorter) ``fallback_ttl_seconds`` so recovery is quick.
    - ``get_or_refill`` collapses concurrent misses into one refill call.
      The first caller runs the refill, everyone else waits on the same
      in-flight call (bounded by ``wait_timeout``) and receives its result
      or its exception.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from saraf.models.rates import RateSnapshot

logger = logging.getLogger("saraf.rates.cache")


@dataclass
class _CacheEntry:
    snapshot: RateSnapshot
    stored_at: float
    ttl: float


@dataclass
class _InFlight:
    done: threading.Event = field(default_factory=threading.Event)
    result: Optional[RateSnapshot] = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class CacheLookup:
    snapshot: RateSnapshot
    hit: bool


class RateCache:
    def __init__(
        self,
        ttl_seconds: float = 300,
        fallback_ttl_seconds: float = 60,
        wait_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = float(ttl_seconds)
        self._fallback_ttl = float(fallback_ttl_seconds)
        self._wait_timeout = wait_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._entry: Optional[_CacheEntry] = None
        self._inflight: Optional[_InFlight] = None

    # Internal --------------------------------------------------
    def _fresh_locked(self) -> Optional[RateSnapshot]:
        entry = self._entry
        if entry and self._clock() - entry.stored_at < entry.ttl:
            return entry.snapshot
        return None

    # Public API -----------------------------------------------
    def peek(self) -> Optional[RateSnapshot]:
        """Fresh snapshot or None; never triggers a refill."""
        with self._lock:
            return self._fresh_locked()

    def last_known(self) -> Optional[RateSnapshot]:
        """Most recent snapshot regardless of age."""
        with self._lock:
            return self._entry.snapshot if self._entry else None

    def store(self, snapshot: RateSnapshot) -> None:
        ttl = self._fallback_ttl if snapshot.is_fallback else self._ttl
        with self._lock:
            self._entry = _CacheEntry(snapshot=snapshot, stored_at=self._clock(), ttl=ttl)

    def invalidate(self) -> None:
        with self._lock:
            self._entry = None

    def get_or_refill(self, refill: Callable[[], RateSnapshot]) -> CacheLookup:
        with self._lock:
            fresh = self._fresh_locked()
            if fresh is not None:
                return CacheLookup(fresh, hit=True)
            call = self._inflight
            leader = call is None
            if leader:
                call = self._inflight = _InFlight()

        if not leader:
            logger.debug("waiting on in-flight rate refill")
            if not call.done.wait(self._wait_timeout):
                raise TimeoutError("timed out waiting for in-flight rate refill")
            if call.error is not None:
                raise call.error
            return CacheLookup(call.result, hit=False)  # type: ignore[arg-type]

        try:
            snapshot = refill()
            self.store(snapshot)
            call.result = snapshot
            return CacheLookup(snapshot, hit=False)
        except BaseException as e:
            call.error = e
            raise
        finally:
            with self._lock:
                self._inflight = None
            call.done.set()
