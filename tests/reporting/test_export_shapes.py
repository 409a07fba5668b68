"""
Tests for the export shapes.

Verifies:
- Every shape renders exactly its fixed column list
- Amounts are rendered at display precision, rates at full precision
- Summary and VAT shapes aggregate; Detail and Audit have one row per result
- Checksums are order independent and sensitive to content
- rounding_diff reports footing drift of the displayed primary column
"""

from datetime import date

import pytest

from commission_kernel.domain.rules import PercentageTerms
from commission_kernel.domain.runs import CalculationRun
from commission_kernel.services.store import InMemoryCommissionStore
from commission_batch.services.executor import RunExecutor
from commission_reporting.shapes import (
    COLUMNS,
    ExportShape,
    render_all,
    render_shape,
    rounding_diff,
    shape_checksum,
    snapshot_index,
)
from tests.conftest import D, TEST_ACTOR_ID, VAT_TABLE, make_event, make_rule


def execute(store, clock, run_id="RUN-1"):
    RunExecutor(
        store, VAT_TABLE, clock=clock, actor_id=TEST_ACTOR_ID, history_in_background=False
    ).execute_run(run_id)
    pinned = store.get_pinned_inputs(run_id)
    return store.list_results(run_id), snapshot_index(pinned.rule_snapshots)


@pytest.fixture
def rendered(seeded_store, clock):
    results, snapshots = execute(seeded_store, clock)
    return results, snapshots, render_all(results, snapshots, 2)


class TestColumns:
    @pytest.mark.parametrize("shape", list(ExportShape))
    def test_rows_have_fixed_columns(self, rendered, shape):
        _, _, shapes = rendered
        for row in shapes[shape].rows:
            assert tuple(row) == COLUMNS[shape]

    def test_render_shape_accepts_name(self, rendered):
        results, snapshots, shapes = rendered
        assert render_shape("vat", results, snapshots, 2) == shapes[ExportShape.VAT]


class TestSummary:
    def test_grouped_by_entity(self, rendered):
        rows = rendered[2][ExportShape.SUMMARY].rows
        assert [(r["entity_type"], r["entity_name"], r["line_count"]) for r in rows] == [
            ("distributor", "Acme Capital", 2),
            ("distributor", "Other Dist", 1),
            ("referrer", "Ref Co", 1),
        ]
        assert rows[0]["gross_commission"] == "2250.00"
        assert rows[0]["vat_amount"] == "382.50"
        assert rows[2]["vat_amount"] == "0.00"


class TestDetail:
    def test_one_row_per_result(self, rendered):
        results, _, shapes = rendered
        rows = shapes[ExportShape.DETAIL].rows
        assert [r["calculation_id"] for r in rows] == [r.calculation_id for r in results]

    def test_amounts_fixed_rates_full(self, rendered):
        rows = rendered[2][ExportShape.DETAIL].rows
        e1 = next(
            r for r in rows
            if r["base_amount"] == "150000.00" and r["entity_type"] == "distributor"
        )
        assert e1["rule_id"] == "DIST-TIER"
        assert e1["gross_commission"] == "1750.00"
        assert e1["vat_rate"] == "0.17"
        assert e1["applied_rate"] == "0.015"


class TestVat:
    def test_grouped_by_rate(self, rendered):
        rows = rendered[2][ExportShape.VAT].rows
        assert [(r["vat_rate"], r["gross_amount"], r["vat_amount"]) for r in rows] == [
            ("0", "250.00", "0.00"),
            ("0.17", "2450.00", "416.50"),
        ]


class TestAudit:
    def test_rows_embed_rule_snapshot(self, rendered):
        results, snapshots, shapes = rendered
        rows = shapes[ExportShape.AUDIT].rows
        assert len(rows) == len(results)
        for row in rows:
            snapshot = row["rule_snapshot"]
            assert snapshot == snapshots[(row["rule_id"], row["rule_version"])]
            assert snapshot["checksum"]
        assert all(row["actor_id"] == TEST_ACTOR_ID for row in rows)


class TestChecksum:
    def test_order_independent(self):
        rows = [{"a": "1"}, {"a": "2"}, {"a": "3"}]
        assert shape_checksum(rows) == shape_checksum(list(reversed(rows)))

    def test_content_sensitive(self):
        assert shape_checksum([{"a": "1.00"}]) != shape_checksum([{"a": "1.0"}])

    def test_stable_across_renders(self, rendered):
        results, snapshots, shapes = rendered
        again = render_all(list(reversed(results)), snapshots, 2)
        assert {s: r.checksum for s, r in again.items()} == {
            s: r.checksum for s, r in shapes.items()
        }

    def test_display_places_change_checksum(self, rendered):
        results, snapshots, shapes = rendered
        wider = render_shape(ExportShape.DETAIL, results, snapshots, 4)
        assert wider.checksum != shapes[ExportShape.DETAIL].checksum


class TestRoundingDiff:
    def test_zero_for_round_amounts(self, rendered):
        results, _, shapes = rendered
        for rows in shapes.values():
            assert rounding_diff(rows, results, 2) == D("0")

    def test_reports_footing_drift(self, clock):
        store = InMemoryCommissionStore()
        store.save_run(CalculationRun(id="RUN-R", name="thirds"))
        store.add_events(
            [make_event(f"E{i}", "100", date(2024, 3, i)) for i in range(1, 4)], run_id="RUN-R"
        )
        store.save_rule(make_rule(terms=PercentageTerms(base_rate=D("0.003333333"))))
        results, snapshots = execute(store, clock, "RUN-R")

        # Each line shows 0.33 while the exact total rounds to 1.00
        detail = render_shape(ExportShape.DETAIL, results, snapshots, 2)
        assert rounding_diff(detail, results, 2) == D("-0.01")
        summary = render_shape(ExportShape.SUMMARY, results, snapshots, 2)
        assert rounding_diff(summary, results, 2) == D("0")
