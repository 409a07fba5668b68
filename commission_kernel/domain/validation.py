"""
Structural pre-validation of rules.

Pure checks with no I/O, run once per rule at the start of a run.  Rules
with errors are excluded from the run with a warning; warnings alone do not
exclude a rule.

Tier gap/overlap problems are errors under ``TierValidation.STRICT`` and
warnings under ``TierValidation.WARN``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from commission_kernel.domain.rules import (
    FixedTerms,
    HybridTerms,
    PercentageTerms,
    Rule,
    TieredTerms,
)


class TierValidation(str, Enum):
    STRICT = "strict"
    WARN = "warn"


@dataclass(frozen=True, slots=True)
class RuleValidationResult:
    rule_id: str
    rule_version: int
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_rule(
    rule: Rule, tier_validation: TierValidation = TierValidation.STRICT
) -> RuleValidationResult:
    errors: list[str] = []
    warnings: list[str] = []

    if (
        rule.effective_from is not None
        and rule.effective_to is not None
        and rule.effective_from >= rule.effective_to
    ):
        errors.append("effective_from must be before effective_to")

    if rule.min_amount.is_negative:
        errors.append("min_amount cannot be negative")
    if rule.max_amount is not None and rule.min_amount >= rule.max_amount:
        errors.append("min_amount must be less than max_amount")

    terms = rule.terms
    if isinstance(terms, (PercentageTerms, HybridTerms)) and terms.base_rate.is_negative:
        errors.append("base_rate cannot be negative")
    if isinstance(terms, (FixedTerms, HybridTerms)) and terms.fixed_amount.is_negative:
        errors.append("fixed_amount cannot be negative")
    if isinstance(terms, TieredTerms):
        structural, partition = _tier_issues(terms)
        errors.extend(structural)
        if tier_validation is TierValidation.STRICT:
            errors.extend(partition)
        else:
            warnings.extend(partition)

    return RuleValidationResult(
        rule_id=rule.id,
        rule_version=rule.version,
        errors=tuple(errors),
        warnings=tuple(warnings),
    )


def _tier_issues(terms: TieredTerms) -> tuple[list[str], list[str]]:
    """Return (structural errors, gap/overlap issues) for a tier schedule."""
    structural: list[str] = []
    partition: list[str] = []
    tiers = terms.tiers

    if not tiers:
        return ["tiered rule has no tiers"], []

    orders = [t.tier_order for t in tiers]
    if len(set(orders)) != len(orders):
        structural.append("duplicate tier_order values")

    for tier in tiers:
        if tier.rate is None and tier.fixed_amount is None:
            structural.append(f"tier {tier.tier_order} has neither rate nor fixed_amount")
        if tier.rate is not None and tier.rate.is_negative:
            structural.append(f"tier {tier.tier_order} rate cannot be negative")
        if tier.min_threshold.is_negative:
            structural.append(f"tier {tier.tier_order} min_threshold cannot be negative")
        if tier.max_threshold is not None and tier.max_threshold <= tier.min_threshold:
            structural.append(
                f"tier {tier.tier_order} max_threshold must exceed min_threshold"
            )

    if not tiers[0].min_threshold.is_zero:
        partition.append(f"gap: tiers start at {tiers[0].min_threshold}, not 0")

    for current, following in zip(tiers, tiers[1:]):
        if current.max_threshold is None:
            partition.append(
                f"overlap: tier {current.tier_order} is unbounded but "
                f"tier {following.tier_order} follows it"
            )
        elif following.min_threshold > current.max_threshold:
            partition.append(
                f"gap: {current.max_threshold} to {following.min_threshold} between "
                f"tiers {current.tier_order} and {following.tier_order}"
            )
        elif following.min_threshold < current.max_threshold:
            partition.append(
                f"overlap: tiers {current.tier_order} and {following.tier_order} "
                f"both cover {following.min_threshold}"
            )

    if tiers[-1].max_threshold is not None:
        partition.append(
            f"gap: no tier covers amounts at or above {tiers[-1].max_threshold}"
        )

    return structural, partition
