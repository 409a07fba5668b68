"""
Condition evaluation -- resolve fields against a context and apply operators.

Pure functions with no I/O.

Semantics:
    - A field that resolves to None (absent from the context) fails its
      condition; it never raises.
    - Numeric operators compare as Decimals.  Date-valued fields compare
      against ISO date strings.
    - ``between`` is inclusive on both ends and needs a two-element list;
      ``in`` / ``not_in`` need a list.  A malformed condition value raises
      ``InvalidConditionError``.
    - Conditions are grouped by ``condition_group``.  A group passes when
      every *required* condition in it passes; the rule passes when any
      group passes.  A rule with no conditions always passes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Sequence

from commission_kernel.domain.records import DistributionEvent
from commission_kernel.domain.rules import ConditionOperator, RuleCondition
from commission_kernel.domain.values import DecimalValue
from commission_kernel.exceptions import InvalidConditionError
from commission_engines.aggregates import HistoricalAggregates

_NUMERIC_OPERATORS = frozenset(
    {
        ConditionOperator.GREATER_THAN,
        ConditionOperator.LESS_THAN,
        ConditionOperator.GREATER_EQUAL,
        ConditionOperator.LESS_EQUAL,
        ConditionOperator.BETWEEN,
    }
)


@dataclass(frozen=True)
class ConditionCheck:
    """Outcome of one condition, kept for execution history."""

    field_name: str
    operator: ConditionOperator
    expected: Any
    actual: Any
    passed: bool
    is_required: bool
    condition_group: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_name": self.field_name,
            "operator": self.operator.value,
            "expected": _jsonable(self.expected),
            "actual": _jsonable(self.actual),
            "passed": self.passed,
            "is_required": self.is_required,
            "condition_group": self.condition_group,
        }


def build_field_context(
    event: DistributionEvent,
    aggregates: HistoricalAggregates,
) -> dict[str, Any]:
    """
    Every field a condition may reference, for one event x role.

    Caller-provided ``event.metadata`` keys are included but never shadow
    the built-in fields.
    """
    quarter = (event.date.month - 1) // 3 + 1
    context: dict[str, Any] = dict(event.metadata)
    context.update(
        {
            "distribution_amount": event.amount,
            "amount": event.amount,
            "investor_name": event.investor_name,
            "fund_name": event.fund_name,
            "distributor_name": event.distributor_name,
            "referrer_name": event.referrer_name,
            "partner_name": event.partner_name,
            "distribution_date": event.date,
            "distribution_month": event.date.month,
            "distribution_quarter": quarter,
            "distribution_year": event.date.year,
            "cumulative_amount": aggregates.cumulative_amount,
            "monthly_volume": aggregates.monthly_volume,
            "quarterly_volume": aggregates.quarterly_volume,
            "annual_volume": aggregates.annual_volume,
            "deal_count": aggregates.deal_count,
        }
    )
    return context


def evaluate_condition(
    condition: RuleCondition, context: Mapping[str, Any]
) -> ConditionCheck:
    actual = context.get(condition.field_name)
    passed = False if actual is None else _apply(condition, actual)
    return ConditionCheck(
        field_name=condition.field_name,
        operator=condition.operator,
        expected=condition.value,
        actual=actual,
        passed=passed,
        is_required=condition.is_required,
        condition_group=condition.condition_group,
    )


def evaluate_conditions(
    conditions: Sequence[RuleCondition], context: Mapping[str, Any]
) -> tuple[bool, list[ConditionCheck]]:
    """Evaluate all conditions; return (rule passes, per-condition checks)."""
    if not conditions:
        return True, []

    checks: list[ConditionCheck] = []
    groups: dict[int, bool] = {}
    for condition in conditions:
        check = evaluate_condition(condition, context)
        checks.append(check)
        groups.setdefault(condition.condition_group, True)
        if condition.is_required and not check.passed:
            groups[condition.condition_group] = False

    return any(groups.values()), checks


def _apply(condition: RuleCondition, actual: Any) -> bool:
    op = condition.operator
    expected = condition.value

    if op is ConditionOperator.BETWEEN:
        if not isinstance(expected, (list, tuple)) or len(expected) != 2:
            raise InvalidConditionError(
                condition.field_name, op.value, "between needs [min, max]"
            )
        low = _comparable(condition, actual, expected[0])
        high = _comparable(condition, actual, expected[1])
        value = _actual_comparable(actual)
        if value is None or low is None or high is None:
            return False
        return low <= value <= high

    if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        if not isinstance(expected, (list, tuple)):
            raise InvalidConditionError(
                condition.field_name, op.value, f"{op.value} needs a list"
            )
        member = any(_equals(actual, item) for item in expected)
        return member if op is ConditionOperator.IN else not member

    if op is ConditionOperator.EQUALS:
        return _equals(actual, expected)

    if op in _NUMERIC_OPERATORS:
        value = _actual_comparable(actual)
        target = _comparable(condition, actual, expected)
        if value is None or target is None:
            return False
        if op is ConditionOperator.GREATER_THAN:
            return value > target
        if op is ConditionOperator.LESS_THAN:
            return value < target
        if op is ConditionOperator.GREATER_EQUAL:
            return value >= target
        return value <= target

    raise InvalidConditionError(condition.field_name, str(op), "unknown operator")


def _actual_comparable(actual: Any) -> Decimal | date | None:
    if isinstance(actual, date):
        return actual
    return _as_decimal(actual)


def _comparable(condition: RuleCondition, actual: Any, raw: Any) -> Decimal | date | None:
    """Coerce a condition operand to the type of the field it is compared with."""
    if isinstance(actual, date):
        if isinstance(raw, date):
            return raw
        try:
            return date.fromisoformat(str(raw))
        except ValueError:
            raise InvalidConditionError(
                condition.field_name, condition.operator.value, f"{raw!r} is not a date"
            ) from None
    parsed = _as_decimal(raw)
    if parsed is None:
        raise InvalidConditionError(
            condition.field_name, condition.operator.value, f"{raw!r} is not numeric"
        )
    return parsed


def _as_decimal(raw: Any) -> Decimal | None:
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, DecimalValue):
        return raw.to_decimal()
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, (int, float, str)):
        # Condition values come from config/JSON; floats are parsed by repr
        try:
            value = Decimal(str(raw).strip())
        except InvalidOperation:
            return None
        return value if value.is_finite() else None
    return None


def _equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, date):
        return actual.isoformat() == str(expected)
    left = _as_decimal(actual)
    right = _as_decimal(expected)
    if left is not None and right is not None:
        return left == right
    return str(actual) == str(expected)


def _jsonable(value: Any) -> Any:
    if isinstance(value, DecimalValue):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
