"""
Pure calculation engines.

Nothing in this package performs I/O except ``LedgerCreditApplier``, which
reads and writes credit balances through a ``CommissionStore``.
"""

from commission_engines.aggregates import AggregateIndex, HistoricalAggregates, resolve_basis
from commission_engines.calculator import CommissionCalculator, CommissionComputation
from commission_engines.conditions import ConditionCheck, build_field_context, evaluate_conditions
from commission_engines.credits import CreditAllocation, LedgerCreditApplier, allocate_fifo
from commission_engines.evaluator import (
    EvaluationContext,
    EvaluationOutcome,
    RuleEvaluator,
    RuleSelection,
    SkipReason,
)
from commission_engines.pricing import EventPricer, PricedRole, build_result, calculation_id, price_all
from commission_engines.tiers import TierWalk, walk_tiers
from commission_engines.vat import VatCalculator, VatSplit

__all__ = [
    "AggregateIndex",
    "CommissionCalculator",
    "CommissionComputation",
    "ConditionCheck",
    "CreditAllocation",
    "EventPricer",
    "EvaluationContext",
    "EvaluationOutcome",
    "HistoricalAggregates",
    "LedgerCreditApplier",
    "PricedRole",
    "RuleEvaluator",
    "RuleSelection",
    "SkipReason",
    "TierWalk",
    "VatCalculator",
    "VatSplit",
    "allocate_fifo",
    "build_field_context",
    "build_result",
    "calculation_id",
    "evaluate_conditions",
    "price_all",
    "resolve_basis",
    "walk_tiers",
]
