"""
ORM models for calculation results and per-rule execution history.

CalculationResultModel keeps the full ``CalculationResult.to_dict()``
payload (trace, credit applications, timestamps) in JSON and duplicates the
headline amounts as DecimalString columns for querying.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from commission_kernel.db.base import TrackedBase
from commission_kernel.db.types import DecimalString, UTCDateTime
from commission_kernel.domain.values import DecimalValue

if TYPE_CHECKING:
    from commission_kernel.domain.results import CalculationResult
    from commission_kernel.domain.runs import ExecutionHistoryEntry


class CalculationResultModel(TrackedBase):
    __tablename__ = "commission_calculation_results"

    __table_args__ = (
        Index("ix_calculation_results_run", "run_id"),
        Index("ix_calculation_results_entity", "entity_type", "entity_name"),
    )

    calculation_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    run_id: Mapped[str] = mapped_column(String(100), nullable=False)
    event_id: Mapped[str] = mapped_column(String(100), nullable=False)
    rule_id: Mapped[str] = mapped_column(String(100), nullable=False)
    rule_version: Mapped[int] = mapped_column(Integer, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_name: Mapped[str] = mapped_column(String(200), nullable=False)
    gross_commission: Mapped[DecimalValue] = mapped_column(DecimalString(), nullable=False)
    vat_amount: Mapped[DecimalValue] = mapped_column(DecimalString(), nullable=False)
    net_commission: Mapped[DecimalValue] = mapped_column(DecimalString(), nullable=False)
    total_payable: Mapped[DecimalValue] = mapped_column(DecimalString(), nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    def to_dto(self) -> CalculationResult:
        from commission_kernel.domain.results import CalculationResult

        return CalculationResult.from_dict(self.payload)

    @classmethod
    def from_dto(
        cls, dto: CalculationResult, created_by_id: str = "system"
    ) -> CalculationResultModel:
        payload = dto.to_dict()
        return cls(
            calculation_id=dto.calculation_id,
            run_id=dto.run_id,
            event_id=dto.event_id,
            rule_id=dto.rule_id,
            rule_version=dto.rule_version,
            entity_type=dto.entity_type.value,
            entity_name=dto.entity_name,
            gross_commission=dto.gross_commission,
            vat_amount=dto.vat_amount,
            net_commission=dto.net_commission,
            total_payable=dto.total_payable,
            checksum=payload["checksum"],
            payload=payload,
            created_by_id=created_by_id,
        )


class ExecutionHistoryModel(TrackedBase):
    __tablename__ = "commission_execution_history"

    __table_args__ = (
        Index("ix_execution_history_run_rule", "run_id", "rule_id"),
    )

    run_id: Mapped[str] = mapped_column(String(100), nullable=False)
    rule_id: Mapped[str] = mapped_column(String(100), nullable=False)
    rule_version: Mapped[int] = mapped_column(Integer, nullable=False)
    event_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    skip_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    conditions_evaluated: Mapped[list | None] = mapped_column(JSON, nullable=True)
    duration_ms: Mapped[float] = mapped_column(Float, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_dto(self) -> ExecutionHistoryEntry:
        from commission_kernel.domain.rules import EntityType
        from commission_kernel.domain.runs import ExecutionHistoryEntry, ExecutionStatus

        return ExecutionHistoryEntry(
            run_id=self.run_id,
            rule_id=self.rule_id,
            rule_version=self.rule_version,
            event_id=self.event_id,
            entity_type=EntityType(self.entity_type),
            entity_name=self.entity_name,
            status=ExecutionStatus(self.status),
            duration_ms=self.duration_ms,
            recorded_at=self.recorded_at,
            skip_reason=self.skip_reason,
            error_message=self.error_message,
            conditions_evaluated=tuple(self.conditions_evaluated or ()),
        )

    @classmethod
    def from_dto(cls, dto: ExecutionHistoryEntry) -> ExecutionHistoryModel:
        return cls(
            run_id=dto.run_id,
            rule_id=dto.rule_id,
            rule_version=dto.rule_version,
            event_id=dto.event_id,
            entity_type=dto.entity_type.value,
            entity_name=dto.entity_name,
            status=dto.status.value,
            skip_reason=dto.skip_reason,
            error_message=dto.error_message,
            conditions_evaluated=list(dto.conditions_evaluated) or None,
            duration_ms=dto.duration_ms,
            recorded_at=dto.recorded_at,
        )
