from __future__ import annotations

"""Rate aggregation: the public read path for exchange rates.

Flow for ``get_rates()``:
    cache hit -> snapshot as-is (no network)
    miss      -> single-flight refill:
                   sources in priority order -> cross-rate derivation
                   all failed                -> static fallback table
                 -> cache store -> best-effort history sample

``get_rates()`` never raises; the worst outcome is a fallback snapshot.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from saraf.core.errors import AllProvidersFailed, ProviderUnavailable, UnsupportedPair
from saraf.db.rate_store import RateStore
from saraf.models.rates import RateSnapshot
from saraf.services.money import round_places, round_rate
from .base import RateSource
from .cache_service import RateCache
from .cross_rates import derive_pair_rate, derive_rate_set
from .fallback import FallbackRateTable

logger = logging.getLogger("saraf.rates.aggregator")

CACHE_HIT = "HIT"
CACHE_MISS = "MISS"
CACHE_FALLBACK = "ERROR-FALLBACK"


@dataclass(frozen=True)
class RateRead:
    snapshot: RateSnapshot
    cache_status: str

    def payload(self) -> List[Dict[str, object]]:
        return [r.as_payload() for r in self.snapshot]


@dataclass(frozen=True)
class Conversion:
    from_currency: str
    to_currency: str
    amount: float
    result: float
    rate: float


class RateAggregator:
    def __init__(
        self,
        sources: Sequence[RateSource],
        fallback: FallbackRateTable,
        cache: RateCache,
        rate_store: Optional[RateStore] = None,
        history_sample_size: int = 20,
        anchor: str = "USD",
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._sources = list(sources)
        self._fallback = fallback
        self._cache = cache
        self._rate_store = rate_store
        self._sample_size = history_sample_size
        self._anchor = anchor
        self._now = now

    # Internal --------------------------------------------------
    def _fetch_live(self) -> RateSnapshot:
        for source in self._sources:
            label = getattr(source, "provider", source.name)
            try:
                quotes = source.fetch_quotes()
                observed_at = self._now()
                rates = derive_rate_set(self._anchor, quotes, source.name, observed_at)
                if not rates:
                    raise ProviderUnavailable(label, "no usable rates after validation")
            except ProviderUnavailable as e:
                logger.warning("%s", e, extra={"source": label})
                continue
            except Exception:
                logger.exception("rate source failed unexpectedly", extra={"source": label})
                continue
            logger.info(
                "rates refreshed from %s (%d pairs)", label, len(rates), extra={"source": label}
            )
            return RateSnapshot(
                rates=tuple(rates), taken_at=observed_at, origin="live", anchor=self._anchor
            )
        raise AllProvidersFailed("all rate sources failed")

    def _refill(self) -> RateSnapshot:
        try:
            snapshot = self._fetch_live()
        except AllProvidersFailed:
            logger.warning("all exchange rate sources failed, using fallback rates")
            snapshot = self._fallback.snapshot(self._now())
        self._persist_sample(snapshot)
        return snapshot

    def _persist_sample(self, snapshot: RateSnapshot) -> None:
        if self._rate_store is None or self._sample_size <= 0:
            return
        try:
            self._rate_store.upsert_samples(snapshot.rates[: self._sample_size])
        except Exception:
            logger.warning("failed to store rate history sample", exc_info=True)

    # Public API -----------------------------------------------
    def get_rates(self) -> RateRead:
        try:
            lookup = self._cache.get_or_refill(self._refill)
        except Exception:
            logger.exception("rate refill failed; serving last known or fallback rates")
            snapshot = self._cache.last_known() or self._fallback.snapshot(self._now())
            return RateRead(snapshot, CACHE_FALLBACK)
        if lookup.hit:
            return RateRead(lookup.snapshot, CACHE_HIT)
        status = CACHE_FALLBACK if lookup.snapshot.is_fallback else CACHE_MISS
        return RateRead(lookup.snapshot, status)

    def get_snapshot(self) -> RateSnapshot:
        return self.get_rates().snapshot

    def rate_for(self, from_currency: str, to_currency: str) -> float:
        """Current rate for a pair, bridged through the anchor when not quoted."""
        snapshot = self.get_snapshot()
        rate = derive_pair_rate(snapshot, from_currency, to_currency)
        if rate is None or rate <= 0:
            raise UnsupportedPair(from_currency.upper(), to_currency.upper())
        return rate

    def convert(self, from_currency: str, to_currency: str, amount: float) -> Conversion:
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        rate = self.rate_for(from_currency, to_currency)
        return Conversion(
            from_currency=from_currency,
            to_currency=to_currency,
            amount=amount,
            result=round_places(amount * rate, 4),
            rate=round_rate(rate),
        )

    def invalidate(self) -> None:
        self._cache.invalidate()
