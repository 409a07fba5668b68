"""
ORM models for calculation runs and their audit artifacts.

Contract:
    CalculationRunModel holds status and totals.  The remaining tables are
    append-mostly audit records hanging off a run id:

    - RunPinnedInputsModel: rule snapshots, event ids, VAT table and
      discounts frozen at execution time (the inputs replay re-walks).
    - LockChecksumModel: one checksum per export shape, written at lock.
    - ExportJobModel: metadata for every export produced.
    - ReplayReportModel: outcome of each replay verification.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Date, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from commission_kernel.db.base import TrackedBase
from commission_kernel.db.types import DecimalString, UTCDateTime
from commission_kernel.domain.values import DecimalValue

if TYPE_CHECKING:
    from commission_kernel.domain.runs import CalculationRun


class CalculationRunModel(TrackedBase):
    __tablename__ = "commission_calculation_runs"

    __table_args__ = (
        Index("ix_calculation_runs_status", "status"),
    )

    run_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    totals: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    locked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> CalculationRun:
        from commission_kernel.domain.runs import CalculationRun, RunStatus, RunTotals

        return CalculationRun(
            id=self.run_id,
            name=self.name,
            status=RunStatus(self.status),
            period_start=self.period_start,
            period_end=self.period_end,
            totals=RunTotals.from_dict(self.totals or {}),
            created_by=self.created_by_id,
            approved_by=self.approved_by,
            locked_by=self.locked_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
            locked_at=self.locked_at,
            notes=self.notes,
        )

    def apply_dto(self, dto: CalculationRun) -> None:
        """Copy mutable run state from ``dto`` onto this row."""
        self.name = dto.name
        self.status = dto.status.value
        self.period_start = dto.period_start
        self.period_end = dto.period_end
        self.totals = dto.totals.to_dict()
        self.approved_by = dto.approved_by
        self.locked_by = dto.locked_by
        self.locked_at = dto.locked_at
        self.notes = dto.notes
        if dto.updated_at is not None:
            self.updated_at = dto.updated_at

    @classmethod
    def from_dto(cls, dto: CalculationRun) -> CalculationRunModel:
        row = cls(run_id=dto.id, created_by_id=dto.created_by or "system")
        if dto.created_at is not None:
            row.created_at = dto.created_at
        row.apply_dto(dto)
        return row


class RunPinnedInputsModel(TrackedBase):
    __tablename__ = "commission_run_pinned_inputs"

    run_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    rule_snapshots: Mapped[list] = mapped_column(JSON, nullable=False)
    event_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    vat_table: Mapped[dict] = mapped_column(JSON, nullable=False)
    discounts: Mapped[list] = mapped_column(JSON, nullable=False)
    pinned_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class LockChecksumModel(TrackedBase):
    __tablename__ = "commission_lock_checksums"

    __table_args__ = (
        UniqueConstraint("run_id", "shape", name="uq_lock_checksums_shape"),
    )

    run_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    shape: Mapped[str] = mapped_column(String(20), nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    row_count: Mapped[int] = mapped_column(Integer, nullable=False)


class ExportJobModel(TrackedBase):
    __tablename__ = "commission_export_jobs"

    run_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    shape: Mapped[str] = mapped_column(String(20), nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    row_count: Mapped[int] = mapped_column(Integer, nullable=False)
    rounding_diff: Mapped[DecimalValue] = mapped_column(DecimalString(), nullable=False)
    exported_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class ReplayReportModel(TrackedBase):
    __tablename__ = "commission_replay_reports"

    run_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    overall_status: Mapped[str] = mapped_column(String(20), nullable=False)
    report: Mapped[dict] = mapped_column(JSON, nullable=False)
    replayed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
