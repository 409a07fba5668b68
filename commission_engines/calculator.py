"""
Commission calculator -- the discount / rate / cap / VAT / credit pipeline.

Responsibility:
    Computes one rule against one base amount.  The order of operations is
    fixed and is a correctness invariant:

        1. discounts reduce the base
        2. rate, fixed amount or tier walk produce the raw commission
        3. caps: min (percentage, hybrid) then max (all but fixed)
        4. VAT split with the rate from the explicit VatTable
        5. credit netting against the VAT-inclusive payable

    Steps 1-4 are ``CommissionCalculator.calculate``; step 5 is
    ``CommissionComputation.with_credits`` because it needs the ledger.
    Every step appends a ``TraceStep``.

Architecture position:
    Engines -- pure, no I/O, no clock.

Cap policy by rule type:
    percentage  min and max
    hybrid      min and max
    tiered      max only
    fixed       none (a fixed fee is not scaled, so neither bound applies)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Sequence

from commission_kernel.domain.records import CreditApplication, Discount
from commission_kernel.domain.results import TraceStep
from commission_kernel.domain.rules import (
    FixedTerms,
    HybridTerms,
    PercentageTerms,
    Rule,
    TieredTerms,
    VatMode,
)
from commission_kernel.domain.values import DecimalValue
from commission_kernel.domain.vat import VatTable
from commission_kernel.logging_config import get_logger
from commission_engines.adjustments import apply_caps, apply_discounts
from commission_engines.credits import CreditAllocation
from commission_engines.tiers import walk_tiers
from commission_engines.vat import VatCalculator, VatSplit

logger = get_logger("engines.calculator")


@dataclass(frozen=True)
class CommissionComputation:
    """Everything computed for one rule x base amount."""

    rule_id: str
    rule_version: int
    original_base: DecimalValue
    base_amount: DecimalValue
    discount_amount: DecimalValue
    applied_rate: DecimalValue
    tier_applied: int | None
    gross_commission: DecimalValue
    vat: VatSplit
    trace: tuple[TraceStep, ...]
    credits_applied: DecimalValue = field(default_factory=DecimalValue.zero)
    credit_applications: tuple[CreditApplication, ...] = ()

    @property
    def vat_amount(self) -> DecimalValue:
        return self.vat.vat_amount

    @property
    def net_commission(self) -> DecimalValue:
        return self.vat.net

    @property
    def amount_due(self) -> DecimalValue:
        return self.vat.total

    @property
    def total_payable(self) -> DecimalValue:
        return self.vat.total - self.credits_applied

    def with_credits(self, allocation: CreditAllocation) -> CommissionComputation:
        """Net a credit allocation against the VAT-inclusive payable."""
        step = TraceStep(
            step_type="credit",
            inputs={"amount_due": self.amount_due},
            outputs={
                "credits_applied": allocation.total_applied,
                "total_payable": self.amount_due - allocation.total_applied,
                "applications": [a.to_dict() for a in allocation.applications],
            },
            formula="total_payable = amount_due - credits_applied (FIFO)",
            notes="" if allocation.applications else "no credits available",
        )
        return replace(
            self,
            credits_applied=allocation.total_applied,
            credit_applications=allocation.applications,
            trace=self.trace + (step,),
        )


class CommissionCalculator:
    """
    Calculate commission for a rule.

    Pure functions - no I/O.  The VAT table is a parameter; there is no
    default rate.
    """

    def __init__(self, vat_calculator: VatCalculator | None = None):
        self._vat = vat_calculator or VatCalculator()

    def calculate(
        self,
        rule: Rule,
        base_amount: DecimalValue,
        vat_table: VatTable,
        on_date: date,
        discounts: Sequence[Discount] = (),
    ) -> CommissionComputation:
        """
        Run steps 1-4 of the pipeline.

        Raises:
            NoApplicableTierError: Tiered rule with no covering bracket.
            VatRateNotFoundError: VAT applies but the table has no rate.
            DivisionByZeroError: Degenerate VAT rate of -1.
        """
        logger.debug(
            "commission_calculation_started",
            extra={
                "rule_id": rule.id,
                "rule_version": rule.version,
                "rule_type": rule.rule_type.value,
                "base_amount": str(base_amount),
            },
        )
        trace: list[TraceStep] = []

        # 1. Discounts
        discounted, discount_total, discount_steps = apply_discounts(
            base_amount, discounts, on_date
        )
        trace.extend(discount_steps)

        # 2. Raw commission
        terms = rule.terms
        tier_applied: int | None = None
        if isinstance(terms, PercentageTerms):
            raw = discounted * terms.base_rate
            applied_rate = terms.base_rate
            trace.append(
                TraceStep(
                    step_type="rate",
                    inputs={"base_amount": discounted, "base_rate": terms.base_rate},
                    outputs={"commission": raw},
                    formula="base_amount x base_rate",
                )
            )
        elif isinstance(terms, FixedTerms):
            raw = terms.fixed_amount
            applied_rate = DecimalValue.zero()
            trace.append(
                TraceStep(
                    step_type="fixed",
                    inputs={"fixed_amount": terms.fixed_amount},
                    outputs={"commission": raw},
                    formula="fixed_amount",
                    notes="fixed fee is not scaled by base amount",
                )
            )
        elif isinstance(terms, HybridTerms):
            raw = terms.fixed_amount + discounted * terms.base_rate
            applied_rate = terms.base_rate
            trace.append(
                TraceStep(
                    step_type="rate",
                    inputs={
                        "base_amount": discounted,
                        "base_rate": terms.base_rate,
                        "fixed_amount": terms.fixed_amount,
                    },
                    outputs={"commission": raw},
                    formula="fixed_amount + base_amount x base_rate",
                )
            )
        elif isinstance(terms, TieredTerms):
            walk = walk_tiers(tiers=terms.tiers, base_amount=discounted, rule_id=rule.id)
            raw = walk.gross
            applied_rate = walk.covering_tier.rate or DecimalValue.zero()
            tier_applied = walk.covering_tier.tier_order
            trace.append(
                TraceStep(
                    step_type="tier",
                    inputs={"base_amount": discounted, "tier_count": len(terms.tiers)},
                    outputs={
                        "commission": raw,
                        "tier_applied": tier_applied,
                        "allocations": [a.to_dict() for a in walk.allocations],
                    },
                    formula="sum(rate x portion + fixed_amount) over touched tiers",
                )
            )
        else:
            raise TypeError(f"Unknown rule terms: {type(terms).__name__}")

        # 3. Caps
        if isinstance(terms, FixedTerms):
            gross = raw
        else:
            min_amount = rule.min_amount if isinstance(terms, (PercentageTerms, HybridTerms)) else None
            gross, cap_step = apply_caps(raw, min_amount, rule.max_amount)
            trace.append(cap_step)

        # 4. VAT
        if rule.vat_mode is VatMode.NOT_APPLICABLE:
            vat_rate = DecimalValue.zero()
        else:
            vat_rate = vat_table.rate_for(rule.vat_jurisdiction, on_date)
        split = self._vat.split(gross=gross, mode=rule.vat_mode, rate=vat_rate)
        trace.append(split.to_trace())

        return CommissionComputation(
            rule_id=rule.id,
            rule_version=rule.version,
            original_base=base_amount,
            base_amount=discounted,
            discount_amount=discount_total,
            applied_rate=applied_rate,
            tier_applied=tier_applied,
            gross_commission=gross,
            vat=split,
            trace=tuple(trace),
        )
