"""Money / rounding helpers.

Centralized so the rate engine, settlement and conversion endpoints use
identical rounding semantics.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP

RATE_PLACES = 6


def round_places(value: float, places: int) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def round2(value: float) -> float:
    return round_places(value, 2)


def round_rate(value: float) -> float:
    """Round a rate to 6 decimal places.

    Rates under 0.1 (IRR->KWD and similar) keep 6 significant digits instead,
    otherwise they would collapse to 0 or lose their reciprocal relationship.
    """
    d = Decimal(str(value))
    if d == 0 or abs(d) >= Decimal("0.1"):
        return round_places(value, RATE_PLACES)
    exponent = d.adjusted()  # position of the leading digit, e.g. -6 for 7.4e-6
    return round_places(value, RATE_PLACES - 1 - exponent)
