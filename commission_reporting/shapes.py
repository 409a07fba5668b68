"""
Export shapes -- the four fixed report layouts and their checksums.

Responsibility:
    Renders ``CalculationResult`` records into Summary, Detail, VAT and Audit
    rows and computes one canonical checksum per shape.

Architecture position:
    Reporting -- pure functions, no I/O.  Used at lock time (checksums are
    stored), by the export service and by the replay verifier.

Invariants enforced:
    - Column order per shape is fixed by ``COLUMNS`` and is part of the
      compatibility surface.
    - Amounts are rendered with ``to_fixed(display_places)`` here and only
      here; rates are rendered at full precision.
    - ``shape_checksum`` is order independent: rows are canonicalized,
      sorted by their serialized form and hashed with SHA-256.

Audit relevance:
    Lock-time checksums and replay checksums are produced by the same
    functions, so a byte difference can only come from different inputs.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence

from commission_kernel.domain.results import CalculationResult
from commission_kernel.domain.values import DecimalValue
from commission_kernel.utils.hashing import hash_rows

RuleSnapshots = Mapping[tuple[str, int], dict[str, Any]]


class ExportShape(str, Enum):
    SUMMARY = "summary"
    DETAIL = "detail"
    VAT = "vat"
    AUDIT = "audit"


COLUMNS: dict[ExportShape, tuple[str, ...]] = {
    ExportShape.SUMMARY: (
        "entity_type",
        "entity_name",
        "gross_commission",
        "vat_amount",
        "net_commission",
        "line_count",
    ),
    ExportShape.DETAIL: (
        "calculation_id",
        "entity_type",
        "entity_name",
        "base_amount",
        "applied_rate",
        "gross_commission",
        "vat_rate",
        "vat_amount",
        "net_commission",
        "rule_id",
        "calculated_at",
    ),
    ExportShape.VAT: (
        "vat_rate",
        "gross_amount",
        "vat_amount",
        "net_amount",
        "line_count",
    ),
    ExportShape.AUDIT: (
        "calculation_id",
        "rule_id",
        "rule_version",
        "rule_snapshot",
        "base_amount",
        "tier_applied",
        "applied_rate",
        "gross_commission",
        "vat_amount",
        "net_commission",
        "actor_id",
        "started_at",
        "finished_at",
    ),
}

# Column whose rounded values are summed for ``rounding_diff``
PRIMARY_AMOUNT: dict[ExportShape, str] = {
    ExportShape.SUMMARY: "gross_commission",
    ExportShape.DETAIL: "gross_commission",
    ExportShape.VAT: "gross_amount",
    ExportShape.AUDIT: "gross_commission",
}


@dataclass(frozen=True)
class ShapeRows:
    shape: ExportShape
    rows: tuple[dict[str, Any], ...]
    checksum: str

    @property
    def row_count(self) -> int:
        return len(self.rows)


def summary_rows(
    results: Sequence[CalculationResult], display_places: int
) -> list[dict[str, Any]]:
    groups: dict[tuple[str, str], list[CalculationResult]] = defaultdict(list)
    for r in results:
        groups[(r.entity_type.value, r.entity_name)].append(r)
    rows = []
    for (entity_type, entity_name), members in sorted(groups.items()):
        rows.append(
            {
                "entity_type": entity_type,
                "entity_name": entity_name,
                "gross_commission": _sum_fixed(members, "gross_commission", display_places),
                "vat_amount": _sum_fixed(members, "vat_amount", display_places),
                "net_commission": _sum_fixed(members, "net_commission", display_places),
                "line_count": len(members),
            }
        )
    return rows


def detail_rows(
    results: Sequence[CalculationResult], display_places: int
) -> list[dict[str, Any]]:
    return [
        {
            "calculation_id": r.calculation_id,
            "entity_type": r.entity_type.value,
            "entity_name": r.entity_name,
            "base_amount": r.base_amount.to_fixed(display_places),
            "applied_rate": str(r.applied_rate),
            "gross_commission": r.gross_commission.to_fixed(display_places),
            "vat_rate": str(r.vat_rate),
            "vat_amount": r.vat_amount.to_fixed(display_places),
            "net_commission": r.net_commission.to_fixed(display_places),
            "rule_id": r.rule_id,
            "calculated_at": r.calculated_at.isoformat(),
        }
        for r in sorted(results, key=lambda r: r.calculation_id)
    ]


def vat_rows(
    results: Sequence[CalculationResult], display_places: int
) -> list[dict[str, Any]]:
    groups: dict[DecimalValue, list[CalculationResult]] = defaultdict(list)
    for r in results:
        groups[r.vat_rate].append(r)
    return [
        {
            "vat_rate": str(rate),
            "gross_amount": _sum_fixed(members, "gross_commission", display_places),
            "vat_amount": _sum_fixed(members, "vat_amount", display_places),
            "net_amount": _sum_fixed(members, "net_commission", display_places),
            "line_count": len(members),
        }
        for rate, members in sorted(groups.items(), key=lambda item: item[0].value)
    ]


def audit_rows(
    results: Sequence[CalculationResult],
    rule_snapshots: RuleSnapshots,
    display_places: int,
) -> list[dict[str, Any]]:
    return [
        {
            "calculation_id": r.calculation_id,
            "rule_id": r.rule_id,
            "rule_version": r.rule_version,
            "rule_snapshot": rule_snapshots.get((r.rule_id, r.rule_version)),
            "base_amount": r.base_amount.to_fixed(display_places),
            "tier_applied": r.tier_applied,
            "applied_rate": str(r.applied_rate),
            "gross_commission": r.gross_commission.to_fixed(display_places),
            "vat_amount": r.vat_amount.to_fixed(display_places),
            "net_commission": r.net_commission.to_fixed(display_places),
            "actor_id": r.actor_id,
            "started_at": r.started_at.isoformat() if r.started_at else None,
            "finished_at": r.finished_at.isoformat() if r.finished_at else None,
        }
        for r in sorted(results, key=lambda r: r.calculation_id)
    ]


def shape_checksum(rows: Sequence[dict[str, Any]]) -> str:
    return hash_rows(list(rows))


def render_shape(
    shape: ExportShape,
    results: Sequence[CalculationResult],
    rule_snapshots: RuleSnapshots,
    display_places: int,
) -> ShapeRows:
    shape = ExportShape(shape)
    if shape is ExportShape.SUMMARY:
        rows = summary_rows(results, display_places)
    elif shape is ExportShape.DETAIL:
        rows = detail_rows(results, display_places)
    elif shape is ExportShape.VAT:
        rows = vat_rows(results, display_places)
    else:
        rows = audit_rows(results, rule_snapshots, display_places)
    return ShapeRows(shape=shape, rows=tuple(rows), checksum=shape_checksum(rows))


def render_all(
    results: Sequence[CalculationResult],
    rule_snapshots: RuleSnapshots,
    display_places: int,
) -> dict[ExportShape, ShapeRows]:
    return {
        shape: render_shape(shape, results, rule_snapshots, display_places)
        for shape in ExportShape
    }


def snapshot_index(snapshots: Sequence[dict[str, Any]]) -> dict[tuple[str, int], dict[str, Any]]:
    """Key pinned rule snapshots by ``(id, version)``."""
    return {(s["id"], int(s["version"])): s for s in snapshots}


def rounding_diff(
    shape_rows: ShapeRows,
    results: Sequence[CalculationResult],
    display_places: int,
) -> DecimalValue:
    """
    Sum of the displayed primary amounts minus the displayed exact total.

    Non-zero values are the rounding drift a reader of the export would see
    when footing the column.
    """
    column = PRIMARY_AMOUNT[shape_rows.shape]
    displayed = DecimalValue.sum(row[column] for row in shape_rows.rows)
    exact = DecimalValue.sum(r.gross_commission for r in results)
    return displayed - exact.round_to(display_places)


def _sum_fixed(
    members: Sequence[CalculationResult], attr: str, display_places: int
) -> str:
    return DecimalValue.sum(getattr(m, attr) for m in members).to_fixed(display_places)
