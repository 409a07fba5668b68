"""
Pure domain layer.

Immutable value types and records with NO dependencies on the ORM, the
database, the wall clock or any I/O.
"""

from commission_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SequentialClock,
    SystemClock,
)
from commission_kernel.domain.records import (
    Credit,
    CreditApplication,
    Discount,
    DiscountKind,
    DistributionEvent,
)
from commission_kernel.domain.results import CalculationResult, TraceStep
from commission_kernel.domain.rules import (
    CalculationBasis,
    CommissionTier,
    ConditionOperator,
    EntityType,
    FixedTerms,
    HybridTerms,
    PercentageTerms,
    Rule,
    RuleCondition,
    RuleTerms,
    RuleType,
    TieredTerms,
    VatMode,
)
from commission_kernel.domain.runs import (
    CalculationRun,
    ExecutionHistoryEntry,
    ExecutionStatus,
    RunStatus,
    RunTotals,
)
from commission_kernel.domain.validation import (
    RuleValidationResult,
    TierValidation,
    validate_rule,
)
from commission_kernel.domain.values import DecimalValue
from commission_kernel.domain.vat import VatRate, VatTable

__all__ = [
    "CalculationBasis",
    "CalculationResult",
    "CalculationRun",
    "Clock",
    "CommissionTier",
    "ConditionOperator",
    "Credit",
    "CreditApplication",
    "DecimalValue",
    "DeterministicClock",
    "Discount",
    "DiscountKind",
    "DistributionEvent",
    "EntityType",
    "ExecutionHistoryEntry",
    "ExecutionStatus",
    "FixedTerms",
    "HybridTerms",
    "PercentageTerms",
    "Rule",
    "RuleCondition",
    "RuleTerms",
    "RuleType",
    "RuleValidationResult",
    "RunStatus",
    "RunTotals",
    "SequentialClock",
    "SystemClock",
    "TieredTerms",
    "TierValidation",
    "TraceStep",
    "VatMode",
    "VatRate",
    "VatTable",
    "validate_rule",
]
