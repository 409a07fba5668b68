"""
Tests for the versioned rule model.

Verifies:
- rule_type is derived from the terms variant
- checksum is deterministic and content sensitive
- revise() produces the next version without touching the original
- snapshot() -> from_snapshot() reproduces an equal rule
- a tampered snapshot is detected
"""

from datetime import date

import pytest

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
    RuleType,
    TieredTerms,
    VatMode,
)
from commission_kernel.exceptions import RuleChecksumMismatchError
from tests.conftest import D, make_rule, make_tiered_terms


class TestRuleType:
    """rule_type always agrees with the terms."""

    def test_percentage(self):
        assert make_rule().rule_type is RuleType.PERCENTAGE

    def test_fixed(self):
        assert make_rule(terms=FixedTerms(fixed_amount="250")).rule_type is RuleType.FIXED

    def test_tiered(self):
        terms = make_tiered_terms(("0", None, "0.01"))
        assert make_rule(terms=terms).rule_type is RuleType.TIERED

    def test_hybrid(self):
        terms = HybridTerms(fixed_amount="100", base_rate="0.005")
        assert make_rule(terms=terms).rule_type is RuleType.HYBRID

    def test_tiers_are_sorted_by_order(self):
        """Tiers given out of order are stored by tier_order."""
        terms = TieredTerms(
            tiers=(
                CommissionTier(tier_order=2, min_threshold="1000", rate="0.02"),
                CommissionTier(tier_order=1, min_threshold="0", max_threshold="1000", rate="0.01"),
            )
        )
        assert [t.tier_order for t in terms.tiers] == [1, 2]

    def test_enum_fields_coerced_from_strings(self):
        rule = Rule(
            id="R",
            version=1,
            entity_type="referrer",
            terms=FixedTerms(fixed_amount="1"),
            vat_mode="added",
            calculation_basis="monthly_volume",
        )
        assert rule.entity_type is EntityType.REFERRER
        assert rule.vat_mode is VatMode.ADDED
        assert rule.calculation_basis is CalculationBasis.MONTHLY_VOLUME


class TestChecksum:
    """Rule checksums identify content."""

    def test_deterministic(self):
        assert make_rule().checksum == make_rule().checksum

    def test_numeric_scale_does_not_change_checksum(self):
        """0.01 and 0.0100 are the same rate."""
        a = make_rule(terms=PercentageTerms(base_rate=D("0.01")))
        b = make_rule(terms=PercentageTerms(base_rate=D("0.0100")))
        assert a.checksum == b.checksum

    def test_any_field_change_changes_checksum(self):
        base = make_rule()
        assert base.checksum != make_rule(priority=5).checksum
        assert base.checksum != make_rule(entity_name="Acme Capital").checksum
        assert base.checksum != make_rule(max_amount=D("500")).checksum
        assert base.checksum != make_rule(is_active=False).checksum

    def test_checksum_is_hex_sha256(self):
        checksum = make_rule().checksum
        assert len(checksum) == 64
        int(checksum, 16)


class TestRevise:
    """Edits create new versions."""

    def test_revise_increments_version(self):
        rule = make_rule()
        revised = rule.revise(priority=5)
        assert revised.version == 2
        assert revised.priority == 5
        assert rule.version == 1
        assert rule.priority == 100

    def test_revise_ignores_id_and_version_overrides(self):
        revised = make_rule().revise(id="OTHER", version=10)
        assert revised.id == "R1"
        assert revised.version == 2

    def test_revised_checksum_differs(self):
        rule = make_rule()
        assert rule.revise().checksum != rule.checksum


class TestSnapshot:
    """snapshot() and from_snapshot()."""

    def setup_method(self):
        self.rule = make_rule(
            "TIER-1",
            terms=make_tiered_terms(("0", "100000", "0.01"), ("100000", None, "0.015")),
            entity_name="Acme Capital",
            min_amount=D("10"),
            max_amount=D("5000"),
            vat_mode=VatMode.INCLUDED,
            vat_jurisdiction="EU",
            priority=3,
            effective_from=date(2024, 1, 1),
            effective_to=date(2024, 12, 31),
            conditions=(
                RuleCondition(
                    field_name="fund_name",
                    operator=ConditionOperator.IN,
                    value=["Fund I", "Fund II"],
                ),
                RuleCondition(
                    field_name="distribution_amount",
                    operator=ConditionOperator.BETWEEN,
                    value=["1000", "500000"],
                    condition_group=1,
                ),
            ),
            name="Tiered Acme",
        )

    def test_round_trip(self):
        restored = Rule.from_snapshot(self.rule.snapshot())
        assert restored == self.rule
        assert restored.checksum == self.rule.checksum

    def test_snapshot_carries_checksum(self):
        snapshot = self.rule.snapshot()
        assert snapshot["checksum"] == self.rule.checksum
        assert snapshot["rule_type"] == "tiered"
        assert snapshot["tiers"][1]["max_threshold"] is None

    def test_snapshot_is_json_safe(self):
        """Amounts render as plain strings and dates as ISO strings."""
        snapshot = self.rule.snapshot()
        assert snapshot["min_amount"] == "10"
        assert snapshot["effective_from"] == "2024-01-01"
        assert snapshot["conditions"][0]["value"] == ["Fund I", "Fund II"]

    def test_tampered_snapshot_detected(self):
        snapshot = self.rule.snapshot()
        snapshot["priority"] = 1
        with pytest.raises(RuleChecksumMismatchError) as exc_info:
            Rule.from_snapshot(snapshot)
        assert exc_info.value.rule_id == "TIER-1"
        assert exc_info.value.expected == self.rule.checksum

    def test_tampered_snapshot_loads_without_verify(self):
        snapshot = self.rule.snapshot()
        snapshot["priority"] = 1
        restored = Rule.from_snapshot(snapshot, verify=False)
        assert restored.priority == 1

    def test_fixed_rule_round_trip(self):
        rule = make_rule("FIX", terms=FixedTerms(fixed_amount="250"))
        assert Rule.from_snapshot(rule.snapshot()) == rule


class TestEffectiveDates:
    """is_effective_on is inclusive on both ends."""

    def test_inclusive_bounds(self):
        rule = make_rule(effective_from=date(2024, 1, 1), effective_to=date(2024, 1, 31))
        assert rule.is_effective_on(date(2024, 1, 1))
        assert rule.is_effective_on(date(2024, 1, 31))
        assert not rule.is_effective_on(date(2023, 12, 31))
        assert not rule.is_effective_on(date(2024, 2, 1))

    def test_open_ended(self):
        assert make_rule().is_effective_on(date(1999, 1, 1))
