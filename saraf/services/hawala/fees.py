"""Settlement arithmetic.

Centralizes the amounts frozen on a hawala at creation:
    - to_amount = from_amount * rate, rounded once to 2 decimals
    - fee       = max(floor, from_amount * percent / 100), rounded to 2 decimals
"""

from __future__ import annotations

from dataclasses import dataclass

from saraf.services.money import round2


@dataclass(frozen=True)
class FeePolicy:
    percent: float = 0.0
    floor: float = 0.0

    def fee_for(self, amount: float) -> float:
        return round2(max(self.floor, amount * self.percent / 100))


@dataclass(frozen=True)
class Settlement:
    from_amount: float
    rate: float
    to_amount: float
    fee: float


def compute_settlement(amount: float, rate: float, policy: FeePolicy) -> Settlement:
    return Settlement(
        from_amount=amount,
        rate=rate,
        to_amount=round2(amount * rate),
        fee=policy.fee_for(amount),
    )
