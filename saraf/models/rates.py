from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, Optional, Tuple

from pydantic import BaseModel, Field

from .constants import ANCHOR_CURRENCY


@dataclass(frozen=True)
class ExchangeRate:
    from_currency: str
    to_currency: str
    rate: float
    observed_at: datetime
    source: str

    def __post_init__(self) -> None:
        if not self.rate > 0:
            raise ValueError(
                f"rate for {self.from_currency}->{self.to_currency} must be positive"
            )

    @property
    def symbol(self) -> str:
        return f"{self.from_currency}{self.to_currency}"

    def as_payload(self) -> Dict[str, object]:
        return {
            "from": self.from_currency,
            "to": self.to_currency,
            "rate": self.rate,
            "lastUpdate": self.observed_at.isoformat(),
            "source": self.source,
        }


@dataclass(frozen=True)
class RateSnapshot:
    """Immutable set of rates valid at ``taken_at``.

    ``origin`` is ``live`` when a provider answered and ``fallback`` when the
    static table was used.
    """

    rates: Tuple[ExchangeRate, ...]
    taken_at: datetime
    origin: str = "live"
    anchor: str = ANCHOR_CURRENCY
    _index: Dict[Tuple[str, str], ExchangeRate] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        index: Dict[Tuple[str, str], ExchangeRate] = {}
        for r in self.rates:
            # first observation of a pair wins; base rates precede derived ones
            index.setdefault((r.from_currency, r.to_currency), r)
        object.__setattr__(self, "_index", index)

    def __iter__(self) -> Iterator[ExchangeRate]:
        return iter(self.rates)

    def __len__(self) -> int:
        return len(self.rates)

    @property
    def is_fallback(self) -> bool:
        return self.origin == "fallback"

    def get(self, from_currency: str, to_currency: str) -> Optional[ExchangeRate]:
        return self._index.get((from_currency.upper(), to_currency.upper()))

    def currencies(self) -> Tuple[str, ...]:
        seen: Dict[str, None] = {}
        for r in self.rates:
            seen.setdefault(r.from_currency, None)
            seen.setdefault(r.to_currency, None)
        return tuple(seen)


class RateOut(BaseModel):
    from_: str = Field(..., alias="from")
    to: str
    rate: float
    lastUpdate: str
    source: str

    model_config = {"populate_by_name": True}


class ConversionOut(BaseModel):
    from_: str = Field(..., alias="from")
    to: str
    amount: float
    result: float
    rate: float

    model_config = {"populate_by_name": True}


class MarketSample(BaseModel):
    symbol: str
    type: str = "forex"
    name: str
    price: float = Field(..., gt=0)
    last_update: datetime
