from __future__ import annotations

"""Cross-rate derivation.

Pure functions over anchor-based quotes. With every quote expressed as
"units of X per 1 anchor", the rate for (A, B) is ``quote(B) / quote(A)``
and the inverse leg back to the anchor is ``1 / quote(X)``.
"""
import logging
from datetime import datetime
from typing import List, Mapping, Optional

from saraf.models.constants import RateOrigin
from saraf.models.rates import ExchangeRate, RateSnapshot
from saraf.services.money import round_rate

logger = logging.getLogger("saraf.rates.cross")


def usable_quotes(quotes: Mapping[str, float], source: str) -> dict[str, float]:
    """Drop non-positive quotes, reporting each as a data-quality anomaly."""
    usable: dict[str, float] = {}
    for currency, value in quotes.items():
        if value > 0:
            usable[currency] = value
        else:
            logger.warning(
                "data quality anomaly: non-positive base rate %r for %s excluded",
                value,
                currency,
                extra={"source": source, "currency": currency},
            )
    return usable


def derive_rate_set(
    anchor: str,
    quotes: Mapping[str, float],
    source: str,
    observed_at: datetime,
) -> List[ExchangeRate]:
    """Base rates, every ordered cross pair, then the inverse legs.

    Base and inverse rates keep the source tag; cross pairs are tagged
    ``calculated``.
    """
    base = usable_quotes(quotes, source)
    calculated = RateOrigin.CALCULATED.value

    rates: List[ExchangeRate] = [
        ExchangeRate(anchor, currency, value, observed_at, source)
        for currency, value in base.items()
    ]
    for a, rate_a in base.items():
        for b, rate_b in base.items():
            if a == b:
                continue
            rates.append(
                ExchangeRate(a, b, round_rate(rate_b / rate_a), observed_at, calculated)
            )
    for currency, value in base.items():
        rates.append(
            ExchangeRate(currency, anchor, round_rate(1 / value), observed_at, source)
        )
    return rates


def derive_pair_rate(
    snapshot: RateSnapshot, from_currency: str, to_currency: str
) -> Optional[float]:
    """Rate for a pair, reading it directly or bridging through the anchor.

    Returns None when either leg is missing from the snapshot.
    """
    from_currency = from_currency.upper()
    to_currency = to_currency.upper()
    if from_currency == to_currency:
        return 1.0
    direct = snapshot.get(from_currency, to_currency)
    if direct is not None:
        return direct.rate

    anchor = snapshot.anchor
    out_leg = snapshot.get(anchor, from_currency)
    in_leg = snapshot.get(anchor, to_currency)
    if from_currency == anchor and in_leg is not None:
        return in_leg.rate
    if to_currency == anchor and out_leg is not None:
        return round_rate(1 / out_leg.rate)
    if out_leg is not None and in_leg is not None:
        return round_rate(in_leg.rate / out_leg.rate)

    # Only reverse legs present (X -> anchor); bridge through them.
    from_leg = snapshot.get(from_currency, anchor)
    to_back = snapshot.get(to_currency, anchor)
    if from_leg is not None and to_back is not None:
        return round_rate(from_leg.rate / to_back.rate)
    return None
