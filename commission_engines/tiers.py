"""
Tier walker -- stepped (marginal) commission over a tier schedule.

Each tier contributes ``rate x portion + fixed_amount`` where ``portion`` is
the part of the base amount inside ``[min_threshold, max_threshold)``.
Tiers entirely above the base contribute nothing.  The tier whose bracket
contains the base amount is the *covering* tier; it always contributes its
fixed amount, even when its portion is zero.

If no bracket contains the base amount the schedule does not apply:
``NoApplicableTierError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from commission_kernel.domain.rules import CommissionTier
from commission_kernel.domain.values import DecimalValue
from commission_kernel.exceptions import NoApplicableTierError
from commission_engines.tracer import traced_engine


@dataclass(frozen=True)
class TierAllocation:
    tier_order: int
    portion: DecimalValue
    rate: DecimalValue
    fixed_amount: DecimalValue
    amount: DecimalValue

    def to_dict(self) -> dict[str, str | int]:
        return {
            "tier_order": self.tier_order,
            "portion": str(self.portion),
            "rate": str(self.rate),
            "fixed_amount": str(self.fixed_amount),
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class TierWalk:
    gross: DecimalValue
    covering_tier: CommissionTier
    allocations: tuple[TierAllocation, ...]


def covers(tier: CommissionTier, amount: DecimalValue) -> bool:
    if amount < tier.min_threshold:
        return False
    return tier.max_threshold is None or amount < tier.max_threshold


@traced_engine("tiers", "1.0", fingerprint_fields=("rule_id", "base_amount"))
def walk_tiers(
    *,
    tiers: Sequence[CommissionTier],
    base_amount: DecimalValue,
    rule_id: str,
) -> TierWalk:
    ordered = sorted(tiers, key=lambda t: t.tier_order)
    covering = next((t for t in ordered if covers(t, base_amount)), None)
    if covering is None:
        raise NoApplicableTierError(rule_id, str(base_amount))

    allocations: list[TierAllocation] = []
    for tier in ordered:
        if tier is not covering and base_amount <= tier.min_threshold:
            continue
        upper = base_amount if tier.max_threshold is None else base_amount.min(tier.max_threshold)
        portion = (upper - tier.min_threshold).max(DecimalValue.zero())
        rate = tier.rate or DecimalValue.zero()
        fixed = tier.fixed_amount or DecimalValue.zero()
        allocations.append(
            TierAllocation(
                tier_order=tier.tier_order,
                portion=portion,
                rate=rate,
                fixed_amount=fixed,
                amount=rate * portion + fixed,
            )
        )

    gross = DecimalValue.sum(a.amount for a in allocations)
    return TierWalk(gross=gross, covering_tier=covering, allocations=tuple(allocations))
