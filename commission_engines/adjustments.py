"""
Base and commission adjustments: discounts before the rate, caps after it.

Pure functions.  Each returns the adjusted amount plus the ``TraceStep``
describing what happened, so the calculator can append it to the trace.
"""

from __future__ import annotations

from datetime import date
from typing import Sequence

from commission_kernel.domain.records import Discount, DiscountKind
from commission_kernel.domain.results import TraceStep
from commission_kernel.domain.values import DecimalValue


def apply_discounts(
    base_amount: DecimalValue,
    discounts: Sequence[Discount],
    on_date: date,
) -> tuple[DecimalValue, DecimalValue, list[TraceStep]]:
    """
    Reduce ``base_amount`` by every discount active on ``on_date``.

    Discounts apply in ``(effective_date, id)`` order; a percentage discount
    applies to the base remaining after earlier discounts.  The base never
    drops below zero.

    Returns:
        (discounted base, total discount, trace steps)
    """
    steps: list[TraceStep] = []
    current = base_amount
    active = sorted(
        (d for d in discounts if d.is_active_on(on_date)),
        key=lambda d: (d.effective_date, d.id),
    )
    for discount in active:
        if discount.kind is DiscountKind.PERCENTAGE:
            reduction = current * discount.percentage
            formula = "base - base x percentage"
        else:
            reduction = discount.amount
            formula = "base - fixed discount"
        after = (current - reduction).max(DecimalValue.zero())
        steps.append(
            TraceStep(
                step_type="discount",
                inputs={
                    "discount_id": discount.id,
                    "kind": discount.kind.value,
                    "base_amount": current,
                    "percentage": discount.percentage,
                    "amount": discount.amount,
                },
                outputs={"discounted_base": after, "reduction": current - after},
                formula=formula,
                notes="floored at zero" if after.is_zero and reduction > current else "",
            )
        )
        current = after

    return current, base_amount - current, steps


def apply_caps(
    amount: DecimalValue,
    min_amount: DecimalValue | None,
    max_amount: DecimalValue | None,
) -> tuple[DecimalValue, TraceStep]:
    """Raise to ``min_amount`` then clamp to ``max_amount`` (either may be None)."""
    capped = amount
    notes: list[str] = []
    if min_amount is not None and capped < min_amount:
        capped = min_amount
        notes.append("raised to min_amount")
    if max_amount is not None and capped > max_amount:
        capped = max_amount
        notes.append("clamped to max_amount")
    step = TraceStep(
        step_type="cap",
        inputs={
            "amount": amount,
            "min_amount": min_amount,
            "max_amount": max_amount,
        },
        outputs={"gross_commission": capped},
        formula="min(max(amount, min_amount), max_amount)",
        notes="; ".join(notes) or "within bounds",
    )
    return capped, step
