from __future__ import annotations

"""Static last-known-good rate table.

Staleness contract: these values were captured on ``FALLBACK_AS_OF`` and are
only served when every live source has failed. Snapshots built from this
table are tagged ``fallback`` and cached with the short fallback TTL so the
service returns to live data as soon as a provider recovers. Refresh the
table when the AFN quote drifts more than a few percent from market.
"""
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from saraf.models.constants import ANCHOR_CURRENCY, RateOrigin
from saraf.models.rates import ExchangeRate, RateSnapshot
from saraf.services.money import round_rate

FALLBACK_AS_OF = date(2024, 1, 15)

# Units of each currency per 1 USD.
FALLBACK_USD_RATES: Dict[str, float] = {
    "AFN": 70.85, "EUR": 0.85, "GBP": 0.73, "PKR": 280.50, "IRR": 42000,
    "CAD": 1.35, "JPY": 150, "AUD": 1.55, "CHF": 0.88, "CNY": 7.25,
    "SAR": 3.75, "AED": 3.67, "INR": 83.25, "TRY": 30.15, "RUB": 92.50,
    "KRW": 1320, "SGD": 1.35, "HKD": 7.85, "MXN": 17.25, "BRL": 5.15,
    "ZAR": 18.75, "THB": 35.50, "MYR": 4.65, "IDR": 15750, "PHP": 56.25,
    "VND": 24500, "EGP": 30.85, "QAR": 3.64, "KWD": 0.31, "BHD": 0.38,
    "OMR": 0.38, "JOD": 0.71, "LBP": 15000, "SYP": 2512, "IQD": 1310,
    "UZS": 12250, "KZT": 450, "KGS": 89.50, "TJS": 10.95, "TMT": 3.50,
}  # fmt: skip


class FallbackRateTable:
    def __init__(
        self,
        usd_rates: Optional[Dict[str, float]] = None,
        anchor: str = ANCHOR_CURRENCY,
    ):
        self._rates = dict(usd_rates if usd_rates is not None else FALLBACK_USD_RATES)
        self.anchor = anchor
        self.as_of = FALLBACK_AS_OF

    def rates(self, now: Optional[datetime] = None) -> List[ExchangeRate]:
        ts = now or datetime.now(timezone.utc)
        tag = RateOrigin.FALLBACK.value
        out: List[ExchangeRate] = []
        for currency, rate in self._rates.items():
            out.append(ExchangeRate(self.anchor, currency, rate, ts, tag))
            out.append(ExchangeRate(currency, self.anchor, round_rate(1 / rate), ts, tag))
        return out

    def snapshot(self, now: Optional[datetime] = None) -> RateSnapshot:
        ts = now or datetime.now(timezone.utc)
        return RateSnapshot(
            rates=tuple(self.rates(ts)), taken_at=ts, origin="fallback", anchor=self.anchor
        )
