from __future__ import annotations

"""Rate source abstraction.

A source answers with raw base quotes against the anchor currency
(anchor -> X, "X per 1 anchor"). Any failure must surface as
``ProviderUnavailable`` so the aggregator can move on to the next source.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Mapping

from saraf.core.errors import ProviderUnavailable
from saraf.models.constants import ANCHOR_CURRENCY, SUPPORTED_CURRENCIES


class RateSource(ABC):
    name: str = "unknown"
    anchor: str = ANCHOR_CURRENCY

    @abstractmethod
    def fetch_quotes(self) -> Dict[str, float]:
        """Return {currency: units per 1 anchor}, or raise ProviderUnavailable."""
        raise NotImplementedError

    def _filter_quotes(
        self,
        quotes: Mapping[str, Any],
        supported: Iterable[str] = SUPPORTED_CURRENCIES,
    ) -> Dict[str, float]:
        """Keep numeric quotes for supported currencies.

        Non-positive values are passed through; the deriver drops and reports
        them. An answer with nothing usable is treated as an invalid shape.
        """
        allowed = set(supported)
        out: Dict[str, float] = {}
        for currency, value in quotes.items():
            if currency not in allowed or currency == self.anchor:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            out[currency] = float(value)
        if not out:
            raise ProviderUnavailable(self.name, "no supported currencies in response")
        return out
