"""Historical rate samples for charting.

Latest observation per ``(symbol, type)``; writes are upserts. Callers treat
every method as best-effort.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from saraf.models import ExchangeRate, MarketSample
from .dal import Database, from_db_ts, to_db_ts
from .memory import MemoryBackend

FOREX_TYPE = "forex"


def _to_sample(rate: ExchangeRate) -> MarketSample:
    return MarketSample(
        symbol=rate.symbol,
        type=FOREX_TYPE,
        name=f"{rate.from_currency} to {rate.to_currency}",
        price=rate.rate,
        last_update=rate.observed_at,
    )


class RateStore(ABC):
    @abstractmethod
    def upsert_samples(self, rates: Iterable[ExchangeRate]) -> int:
        """Write the latest observation for each symbol; returns rows written."""

    @abstractmethod
    def latest(self, symbol: Optional[str] = None) -> List[MarketSample]: ...


class SqliteRateStore(RateStore):
    def __init__(self, db: Database):
        self._db = db

    def upsert_samples(self, rates: Iterable[ExchangeRate]) -> int:
        samples = [_to_sample(r) for r in rates]
        with self._db.atomic() as conn:
            for s in samples:
                conn.execute(
                    """
                    INSERT INTO market_data (symbol, type, name, price, last_update)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(symbol, type) DO UPDATE SET
                        price = excluded.price,
                        change_24h = 0,
                        change_percent_24h = 0,
                        last_update = excluded.last_update
                    """,
                    (s.symbol, s.type, s.name, s.price, to_db_ts(s.last_update)),
                )
        return len(samples)

    def latest(self, symbol: Optional[str] = None) -> List[MarketSample]:
        query = "SELECT symbol, type, name, price, last_update FROM market_data WHERE type = ?"
        params: list = [FOREX_TYPE]
        if symbol:
            query += " AND symbol = ?"
            params.append(symbol.upper())
        query += " ORDER BY symbol ASC"
        with self._db._connect() as conn:
            cur = conn.execute(query, params)
            return [
                MarketSample(
                    symbol=r["symbol"],
                    type=r["type"],
                    name=r["name"],
                    price=r["price"],
                    last_update=from_db_ts(r["last_update"]),
                )
                for r in cur.fetchall()
            ]


class MemoryRateStore(RateStore):
    def __init__(self, backend: MemoryBackend):
        self._b = backend

    def upsert_samples(self, rates: Iterable[ExchangeRate]) -> int:
        samples = [_to_sample(r) for r in rates]
        with self._b.lock:
            for s in samples:
                self._b.market[(s.symbol, s.type)] = s
        return len(samples)

    def latest(self, symbol: Optional[str] = None) -> List[MarketSample]:
        with self._b.lock:
            items = [
                s
                for (sym, typ), s in self._b.market.items()
                if typ == FOREX_TYPE and (symbol is None or sym == symbol.upper())
            ]
        return sorted(items, key=lambda s: s.symbol)
