"""
Tests for condition evaluation.

Verifies:
- Operators compare numerically, by date, or by string as appropriate
- A missing field fails its condition without raising
- Malformed values raise InvalidConditionError
- Groups are OR-ed; required conditions inside a group are AND-ed
"""

from datetime import date

import pytest

from commission_kernel.domain.rules import ConditionOperator, RuleCondition
from commission_kernel.exceptions import InvalidConditionError
from commission_engines.aggregates import HistoricalAggregates
from commission_engines.conditions import build_field_context, evaluate_conditions
from tests.conftest import D, make_event


def cond(field_name, operator, value, *, group=0, required=True):
    return RuleCondition(
        field_name=field_name,
        operator=ConditionOperator(operator),
        value=value,
        is_required=required,
        condition_group=group,
    )


class TestFieldContext:
    """build_field_context."""

    def setup_method(self):
        self.event = make_event("E1", "150000", date(2024, 5, 15), region="EMEA", deal_count=99)
        self.aggregates = HistoricalAggregates(
            cumulative_amount=D("250000"), monthly_volume=D("150000"), deal_count=2
        )
        self.context = build_field_context(self.event, self.aggregates)

    def test_event_fields(self):
        assert self.context["distribution_amount"] == D("150000")
        assert self.context["fund_name"] == "Fund I"
        assert self.context["distribution_quarter"] == 2
        assert self.context["distribution_month"] == 5
        assert self.context["distribution_year"] == 2024

    def test_aggregate_fields(self):
        assert self.context["cumulative_amount"] == D("250000")
        assert self.context["monthly_volume"] == D("150000")

    def test_metadata_included(self):
        assert self.context["region"] == "EMEA"

    def test_metadata_never_shadows_builtin_fields(self):
        assert self.context["deal_count"] == 2


class TestOperators:
    """Single-condition behavior."""

    def setup_method(self):
        event = make_event("E1", "150000", date(2024, 3, 1), region="EMEA", tier="2")
        self.context = build_field_context(event, HistoricalAggregates())

    def check(self, condition):
        passed, checks = evaluate_conditions([condition], self.context)
        assert len(checks) == 1
        assert checks[0].passed is passed
        return passed

    def test_equals_string(self):
        assert self.check(cond("fund_name", "equals", "Fund I"))
        assert not self.check(cond("fund_name", "equals", "Fund II"))

    def test_equals_numeric_across_scale(self):
        assert self.check(cond("distribution_amount", "equals", "150000.00"))

    def test_equals_numeric_metadata(self):
        """Metadata strings compare numerically against numeric values."""
        assert self.check(cond("tier", "equals", 2))

    @pytest.mark.parametrize(
        "operator,value,expected",
        [
            ("greater_than", "100000", True),
            ("greater_than", "150000", False),
            ("greater_equal", "150000", True),
            ("less_than", "150000", False),
            ("less_equal", 150000, True),
        ],
    )
    def test_numeric_comparisons(self, operator, value, expected):
        assert self.check(cond("distribution_amount", operator, value)) is expected

    def test_between_is_inclusive(self):
        assert self.check(cond("distribution_amount", "between", ["150000", "200000"]))
        assert self.check(cond("distribution_amount", "between", ["100000", "150000"]))
        assert not self.check(cond("distribution_amount", "between", ["150001", "200000"]))

    def test_in_and_not_in(self):
        assert self.check(cond("region", "in", ["EMEA", "APAC"]))
        assert not self.check(cond("region", "not_in", ["EMEA", "APAC"]))
        assert self.check(cond("region", "not_in", ["US"]))

    def test_date_comparison(self):
        assert self.check(cond("distribution_date", "greater_equal", "2024-03-01"))
        assert not self.check(cond("distribution_date", "less_than", "2024-03-01"))
        assert self.check(cond("distribution_date", "between", ["2024-01-01", "2024-03-31"]))

    def test_date_equals_iso_string(self):
        assert self.check(cond("distribution_date", "equals", "2024-03-01"))

    def test_missing_field_fails_without_raising(self):
        passed, checks = evaluate_conditions([cond("country", "equals", "IL")], self.context)
        assert not passed
        assert checks[0].actual is None

    def test_none_role_name_fails(self):
        """An unpopulated role field is treated as missing."""
        assert not self.check(cond("partner_name", "equals", "None"))


class TestMalformedConditions:
    """Malformed condition values raise InvalidConditionError."""

    def setup_method(self):
        self.context = build_field_context(make_event(), HistoricalAggregates())

    def test_between_needs_two_values(self):
        with pytest.raises(InvalidConditionError) as exc_info:
            evaluate_conditions([cond("distribution_amount", "between", ["1"])], self.context)
        assert exc_info.value.code == "INVALID_CONDITION"

    def test_between_needs_a_list(self):
        with pytest.raises(InvalidConditionError):
            evaluate_conditions([cond("distribution_amount", "between", "1-10")], self.context)

    def test_in_needs_a_list(self):
        with pytest.raises(InvalidConditionError):
            evaluate_conditions([cond("fund_name", "in", "Fund I")], self.context)

    def test_non_numeric_operand(self):
        with pytest.raises(InvalidConditionError):
            evaluate_conditions([cond("distribution_amount", "greater_than", "lots")], self.context)

    def test_bad_date_operand(self):
        with pytest.raises(InvalidConditionError):
            evaluate_conditions([cond("distribution_date", "greater_than", "soon")], self.context)


class TestGroups:
    """Group composition."""

    def setup_method(self):
        self.context = build_field_context(make_event("E1", "150000"), HistoricalAggregates())

    def test_no_conditions_pass(self):
        assert evaluate_conditions([], self.context) == (True, [])

    def test_required_conditions_are_anded(self):
        passed, _ = evaluate_conditions(
            [
                cond("fund_name", "equals", "Fund I"),
                cond("distribution_amount", "greater_than", "200000"),
            ],
            self.context,
        )
        assert not passed

    def test_groups_are_ored(self):
        passed, checks = evaluate_conditions(
            [
                cond("distribution_amount", "greater_than", "200000", group=0),
                cond("fund_name", "equals", "Fund I", group=1),
            ],
            self.context,
        )
        assert passed
        assert [c.passed for c in checks] == [False, True]

    def test_optional_condition_does_not_block(self):
        passed, checks = evaluate_conditions(
            [
                cond("fund_name", "equals", "Fund I"),
                cond("investor_name", "equals", "Someone Else", required=False),
            ],
            self.context,
        )
        assert passed
        assert not checks[1].passed

    def test_every_condition_is_checked(self):
        """All conditions are evaluated so history records each one."""
        _, checks = evaluate_conditions(
            [
                cond("fund_name", "equals", "Nope"),
                cond("investor_name", "equals", "Investor A"),
            ],
            self.context,
        )
        assert len(checks) == 2

    def test_check_to_dict_is_json_safe(self):
        _, checks = evaluate_conditions(
            [cond("distribution_amount", "between", ["1", "2"])], self.context
        )
        data = checks[0].to_dict()
        assert data["actual"] == "150000"
        assert data["expected"] == ["1", "2"]
        assert data["operator"] == "between"
