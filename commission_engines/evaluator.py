"""
Rule evaluator -- applicability, condition checks and rule selection.

Responsibility:
    ``RuleEvaluator.evaluate(rule, context)`` decides whether one rule
    applies to one event x role and, if it does, runs the calculator.
    ``RuleEvaluator.select_rule(rules, context)`` walks a rule set in
    priority order and returns the first applicable outcome.

Architecture position:
    Engines -- pure apart from a monotonic timer used for
    ``execution_time_ms``.

Applicability checks (in order, stopping at the first failure):
    1. ``rule.is_active``                              -> ``inactive``
    2. event date within ``[effective_from, effective_to]``
                                                       -> ``out_of_date_range``
    3. entity type matches; named rules match the role name exactly,
       wildcard rules match any name                   -> ``entity_mismatch``
    4. condition groups pass                           -> ``conditions_not_met``

    A ``CommissionKernelError`` raised while checking conditions, resolving
    the calculation basis or calculating yields ``evaluation_error``.  It
    fails that rule only; selection moves on to the next rule.

Selection policy:
    Rules are tried in ascending ``(priority, id, version)``.  The first
    applicable rule wins; rules are never combined for one event x role.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable

from commission_kernel.domain.records import Discount, DistributionEvent
from commission_kernel.domain.rules import EntityType, Rule
from commission_kernel.domain.vat import VatTable
from commission_kernel.exceptions import CommissionKernelError
from commission_kernel.logging_config import get_logger
from commission_engines.aggregates import HistoricalAggregates, resolve_basis
from commission_engines.calculator import CommissionCalculator, CommissionComputation
from commission_engines.conditions import (
    ConditionCheck,
    build_field_context,
    evaluate_conditions,
)

logger = get_logger("engines.evaluator")


class SkipReason(str, Enum):
    """Why a rule did not produce a calculation."""

    INACTIVE = "inactive"
    OUT_OF_DATE_RANGE = "out_of_date_range"
    ENTITY_MISMATCH = "entity_mismatch"
    CONDITIONS_NOT_MET = "conditions_not_met"
    EVALUATION_ERROR = "evaluation_error"


@dataclass(frozen=True)
class EvaluationContext:
    """One event seen from one entity role, plus everything needed to price it."""

    event: DistributionEvent
    entity_type: EntityType
    entity_name: str
    vat_table: VatTable
    aggregates: HistoricalAggregates = field(default_factory=HistoricalAggregates)
    discounts: tuple[Discount, ...] = ()


@dataclass(frozen=True)
class EvaluationOutcome:
    rule: Rule
    applicable: bool
    conditions_met: bool
    execution_time_ms: float
    calculation: CommissionComputation | None = None
    skip_reason: SkipReason | None = None
    checks: tuple[ConditionCheck, ...] = ()
    error_code: str | None = None
    error_message: str | None = None

    @property
    def failed(self) -> bool:
        return self.skip_reason is SkipReason.EVALUATION_ERROR


@dataclass(frozen=True)
class RuleSelection:
    """Result of walking a rule set: the winner (if any) and every outcome seen."""

    selected: EvaluationOutcome | None
    outcomes: tuple[EvaluationOutcome, ...]

    @property
    def errors(self) -> tuple[EvaluationOutcome, ...]:
        return tuple(o for o in self.outcomes if o.failed)


class RuleEvaluator:
    """
    Evaluate rules against an event x role.

    Contract:
        ``evaluate`` never raises for a per-rule problem; it returns an
        outcome carrying the skip reason or error code.

    Non-goals:
        - Does NOT touch credits; netting happens in the orchestrator,
          which owns the ledger.
    """

    def __init__(
        self,
        calculator: CommissionCalculator | None = None,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self._calculator = calculator or CommissionCalculator()
        self._timer = timer

    def evaluate(self, rule: Rule, context: EvaluationContext) -> EvaluationOutcome:
        started = self._timer()

        def elapsed() -> float:
            return (self._timer() - started) * 1000

        event = context.event
        if not rule.is_active:
            return self._skip(rule, SkipReason.INACTIVE, elapsed())
        if not rule.is_effective_on(event.date):
            return self._skip(rule, SkipReason.OUT_OF_DATE_RANGE, elapsed())
        if rule.entity_type is not context.entity_type or (
            rule.entity_name is not None and rule.entity_name != context.entity_name
        ):
            return self._skip(rule, SkipReason.ENTITY_MISMATCH, elapsed())

        checks: list[ConditionCheck] = []
        try:
            fields = build_field_context(event, context.aggregates)
            passed, checks = evaluate_conditions(rule.conditions, fields)
            if not passed:
                return self._skip(
                    rule, SkipReason.CONDITIONS_NOT_MET, elapsed(), tuple(checks)
                )
            base = resolve_basis(rule.calculation_basis, event, context.aggregates)
            calculation = self._calculator.calculate(
                rule,
                base,
                context.vat_table,
                event.date,
                context.discounts,
            )
        except CommissionKernelError as exc:
            logger.warning(
                "rule_evaluation_failed",
                extra={
                    "rule_id": rule.id,
                    "rule_version": rule.version,
                    "event_id": event.id,
                    "entity_type": context.entity_type.value,
                    "error_code": exc.code,
                    "error": str(exc),
                },
            )
            return EvaluationOutcome(
                rule=rule,
                applicable=False,
                conditions_met=False,
                execution_time_ms=elapsed(),
                skip_reason=SkipReason.EVALUATION_ERROR,
                checks=tuple(checks),
                error_code=exc.code,
                error_message=str(exc),
            )

        return EvaluationOutcome(
            rule=rule,
            applicable=True,
            conditions_met=True,
            execution_time_ms=elapsed(),
            calculation=calculation,
            checks=tuple(checks),
        )

    def select_rule(
        self, rules: Iterable[Rule], context: EvaluationContext
    ) -> RuleSelection:
        """First applicable rule in ascending priority; later rules are not evaluated."""
        outcomes: list[EvaluationOutcome] = []
        for rule in sorted(rules, key=lambda r: (r.priority, r.id, r.version)):
            outcome = self.evaluate(rule, context)
            outcomes.append(outcome)
            if outcome.applicable:
                logger.debug(
                    "rule_selected",
                    extra={
                        "rule_id": rule.id,
                        "rule_version": rule.version,
                        "priority": rule.priority,
                        "event_id": context.event.id,
                        "entity_type": context.entity_type.value,
                        "entity_name": context.entity_name,
                    },
                )
                return RuleSelection(selected=outcome, outcomes=tuple(outcomes))
        return RuleSelection(selected=None, outcomes=tuple(outcomes))

    @staticmethod
    def _skip(
        rule: Rule,
        reason: SkipReason,
        elapsed_ms: float,
        checks: tuple[ConditionCheck, ...] = (),
    ) -> EvaluationOutcome:
        logger.debug(
            "rule_skipped",
            extra={"rule_id": rule.id, "rule_version": rule.version, "skip_reason": reason.value},
        )
        return EvaluationOutcome(
            rule=rule,
            applicable=False,
            conditions_met=False,
            execution_time_ms=elapsed_ms,
            skip_reason=reason,
            checks=checks,
        )
