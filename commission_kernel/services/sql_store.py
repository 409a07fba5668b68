"""
SqlCommissionStore -- SQLAlchemy implementation of CommissionStore.

Responsibility:
    Maps the CommissionStore protocol onto the ORM models in
    ``commission_kernel.models``.

Architecture position:
    Kernel > Services.  Imports models and domain; never imported by
    domain or engines.

Transactions:
    The store flushes but never commits.  The caller owns the unit of work
    (typically ``session_scope()``).  A Session is not thread-safe, so every
    method runs under one re-entrant lock; concurrent workers in a run are
    serialized at this boundary only.

    Multi-row writes (``consume_credits``, ``release_credits``,
    ``save_lock``) and history inserts run inside a SAVEPOINT.  A failure
    there rolls back only that write and leaves the caller's transaction
    usable.

Failure modes:
    - Any ``SQLAlchemyError`` is re-raised as ``PersistenceError`` with the
      operation name, so the orchestrator can tell infrastructure failures
      apart from calculation failures.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import date
from typing import Iterable, Iterator, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from commission_kernel.domain.records import (
    Credit,
    CreditApplication,
    Discount,
    DistributionEvent,
)
from commission_kernel.domain.results import CalculationResult
from commission_kernel.domain.rules import Rule
from commission_kernel.domain.runs import CalculationRun, ExecutionHistoryEntry
from commission_kernel.domain.values import DecimalValue
from commission_kernel.domain.vat import VatTable
from commission_kernel.exceptions import (
    CommissionKernelError,
    CreditError,
    CreditOverdrawError,
    PersistenceError,
    RuleImmutableError,
    RuleNotFoundError,
    RunNotFoundError,
)
from commission_kernel.logging_config import get_logger
from commission_kernel.models import (
    CalculationResultModel,
    CalculationRunModel,
    CreditModel,
    DiscountModel,
    DistributionEventModel,
    ExecutionHistoryModel,
    ExportJobModel,
    LockChecksumModel,
    ReplayReportModel,
    RuleModel,
    RunEventModel,
    RunPinnedInputsModel,
)
from commission_kernel.services.store import (
    ExportJob,
    PinnedInputs,
    ReplayRecord,
    ShapeChecksum,
)

logger = get_logger("services.sql_store")


class SqlCommissionStore:
    """CommissionStore backed by a SQLAlchemy Session."""

    def __init__(self, session: Session, actor_id: str = "system"):
        self._session = session
        self._actor_id = actor_id
        self._lock = threading.RLock()

    @contextmanager
    def _op(self, operation: str) -> Iterator[Session]:
        with self._lock:
            try:
                yield self._session
            except CommissionKernelError:
                raise
            except SQLAlchemyError as exc:
                logger.error(
                    "store_operation_failed",
                    extra={"operation": operation, "error": str(exc)},
                )
                raise PersistenceError(operation, str(exc)) from exc

    # Seeding

    def add_events(
        self, events: Iterable[DistributionEvent], run_id: str | None = None
    ) -> None:
        with self._op("add_events") as s:
            for event in events:
                existing = s.scalar(
                    select(DistributionEventModel).where(
                        DistributionEventModel.event_id == event.id
                    )
                )
                if existing is None:
                    s.add(DistributionEventModel.from_dto(event, self._actor_id))
                if run_id is not None:
                    linked = s.scalar(
                        select(RunEventModel).where(
                            RunEventModel.run_id == run_id,
                            RunEventModel.event_id == event.id,
                        )
                    )
                    if linked is None:
                        s.add(
                            RunEventModel(
                                run_id=run_id,
                                event_id=event.id,
                                created_by_id=self._actor_id,
                            )
                        )
            s.flush()

    def add_credit(self, credit: Credit) -> None:
        with self._op("add_credit") as s:
            s.add(CreditModel.from_dto(credit, self._actor_id))
            s.flush()

    def add_discount(self, discount: Discount) -> None:
        with self._op("add_discount") as s:
            s.add(DiscountModel.from_dto(discount, self._actor_id))
            s.flush()

    def get_credit(self, credit_id: str) -> Credit:
        with self._op("get_credit") as s:
            return self._credit_row(s, credit_id).to_dto()

    # Runs

    def get_run(self, run_id: str) -> CalculationRun:
        with self._op("get_run") as s:
            row = s.scalar(
                select(CalculationRunModel).where(CalculationRunModel.run_id == run_id)
            )
            if row is None:
                raise RunNotFoundError(run_id)
            return row.to_dto()

    def save_run(self, run: CalculationRun) -> None:
        with self._op("save_run") as s:
            row = s.scalar(
                select(CalculationRunModel).where(CalculationRunModel.run_id == run.id)
            )
            if row is None:
                s.add(CalculationRunModel.from_dto(run))
            else:
                row.apply_dto(run)
                row.updated_by_id = self._actor_id
            s.flush()

    # Events

    def list_run_events(self, run_id: str) -> list[DistributionEvent]:
        with self._op("list_run_events") as s:
            rows = s.scalars(
                select(DistributionEventModel)
                .join(
                    RunEventModel,
                    RunEventModel.event_id == DistributionEventModel.event_id,
                )
                .where(RunEventModel.run_id == run_id)
                .order_by(DistributionEventModel.event_date, DistributionEventModel.event_id)
            ).all()
            return [r.to_dto() for r in rows]

    def get_events(self, event_ids: Iterable[str]) -> list[DistributionEvent]:
        ids = list(event_ids)
        if not ids:
            return []
        with self._op("get_events") as s:
            rows = s.scalars(
                select(DistributionEventModel)
                .where(DistributionEventModel.event_id.in_(ids))
                .order_by(DistributionEventModel.event_date, DistributionEventModel.event_id)
            ).all()
            return [r.to_dto() for r in rows]

    # Rules

    def list_active_rules(self) -> list[Rule]:
        with self._op("list_active_rules") as s:
            rows = s.scalars(
                select(RuleModel)
                .where(RuleModel.is_active.is_(True))
                .order_by(RuleModel.priority, RuleModel.rule_id, RuleModel.version)
            ).all()
            return [r.to_dto() for r in rows]

    def get_rule(self, rule_id: str, version: int) -> Rule:
        with self._op("get_rule") as s:
            row = s.scalar(
                select(RuleModel).where(
                    RuleModel.rule_id == rule_id, RuleModel.version == version
                )
            )
            if row is None:
                raise RuleNotFoundError(rule_id, version)
            return row.to_dto()

    def save_rule(self, rule: Rule) -> None:
        with self._op("save_rule") as s:
            row = s.scalar(
                select(RuleModel).where(
                    RuleModel.rule_id == rule.id, RuleModel.version == rule.version
                )
            )
            if row is None:
                s.add(RuleModel.from_dto(rule, self._actor_id))
            elif row.checksum != rule.checksum:
                if self._is_pinned(s, rule.id, rule.version):
                    raise RuleImmutableError(rule.id, rule.version)
                fresh = RuleModel.from_dto(rule, self._actor_id)
                for attr in ("checksum", "name", "entity_type", "rule_type",
                             "priority", "is_active", "snapshot"):
                    setattr(row, attr, getattr(fresh, attr))
                row.updated_by_id = self._actor_id
            s.flush()

    @staticmethod
    def _is_pinned(s: Session, rule_id: str, version: int) -> bool:
        for snapshots in s.scalars(select(RunPinnedInputsModel.rule_snapshots)):
            for snap in snapshots:
                if snap["id"] == rule_id and int(snap["version"]) == version:
                    return True
        return False

    # Credits and discounts

    def list_credits(self, investor_name: str, fund_name: str) -> list[Credit]:
        with self._op("list_credits") as s:
            rows = s.scalars(
                select(CreditModel)
                .where(
                    CreditModel.investor_name == investor_name,
                    CreditModel.fund_name == fund_name,
                )
                .order_by(CreditModel.date_posted, CreditModel.credit_id)
            ).all()
            # Balances are text columns; filter on the decoded value
            return [r.to_dto() for r in rows if r.remaining_balance.is_positive]

    def update_credit_balance(self, credit_id: str, new_balance: DecimalValue) -> None:
        with self._op("update_credit_balance") as s:
            row = self._credit_row(s, credit_id)
            self._check_decrease(credit_id, row.remaining_balance, new_balance)
            row.remaining_balance = new_balance
            row.updated_by_id = self._actor_id
            s.flush()

    def consume_credits(self, applications: Sequence[CreditApplication]) -> None:
        """Decrement several credits in one SAVEPOINT; all or none."""
        with self._op("consume_credits") as s, s.begin_nested():
            staged: dict[str, tuple[CreditModel, DecimalValue]] = {}
            for application in applications:
                row, balance = staged.get(application.credit_id) or self._balance_of(
                    s, application.credit_id
                )
                new_balance = balance - application.amount_applied
                self._check_decrease(row.credit_id, balance, new_balance)
                staged[row.credit_id] = (row, new_balance)
            self._write_balances(s, staged)

    def release_credits(self, applications: Sequence[CreditApplication]) -> None:
        """Return applied amounts to their credits in one SAVEPOINT."""
        with self._op("release_credits") as s, s.begin_nested():
            staged: dict[str, tuple[CreditModel, DecimalValue]] = {}
            for application in applications:
                if application.amount_applied.is_negative:
                    raise CreditError(
                        f"Cannot release a negative amount "
                        f"({application.amount_applied}) to credit {application.credit_id}"
                    )
                row, balance = staged.get(application.credit_id) or self._balance_of(
                    s, application.credit_id
                )
                staged[row.credit_id] = (row, balance + application.amount_applied)
            self._write_balances(s, staged)

    def _balance_of(self, s: Session, credit_id: str) -> tuple[CreditModel, DecimalValue]:
        row = self._credit_row(s, credit_id)
        return row, row.remaining_balance

    def _write_balances(
        self, s: Session, staged: dict[str, tuple[CreditModel, DecimalValue]]
    ) -> None:
        for row, balance in staged.values():
            row.remaining_balance = balance
            row.updated_by_id = self._actor_id
        s.flush()

    @staticmethod
    def _check_decrease(
        credit_id: str, current: DecimalValue, new_balance: DecimalValue
    ) -> None:
        if new_balance.is_negative:
            raise CreditOverdrawError(
                credit_id, str(current), str(current - new_balance)
            )
        if new_balance > current:
            raise CreditError(
                f"Credit {credit_id} balance cannot increase "
                f"({current} -> {new_balance})"
            )

    @staticmethod
    def _credit_row(s: Session, credit_id: str) -> CreditModel:
        row = s.scalar(select(CreditModel).where(CreditModel.credit_id == credit_id))
        if row is None:
            raise CreditError(f"Credit not found: {credit_id}")
        return row

    def list_discounts(
        self, investor_name: str, fund_name: str, on_date: date
    ) -> list[Discount]:
        with self._op("list_discounts") as s:
            rows = s.scalars(
                select(DiscountModel)
                .where(
                    DiscountModel.investor_name == investor_name,
                    DiscountModel.fund_name == fund_name,
                    DiscountModel.effective_date <= on_date,
                )
                .order_by(DiscountModel.effective_date, DiscountModel.discount_id)
            ).all()
            return [r.to_dto() for r in rows if r.to_dto().is_active_on(on_date)]

    # Results

    def replace_results(self, run_id: str, results: list[CalculationResult]) -> None:
        with self._op("replace_results") as s:
            s.execute(
                delete(CalculationResultModel).where(
                    CalculationResultModel.run_id == run_id
                )
            )
            s.add_all(
                CalculationResultModel.from_dto(r, self._actor_id) for r in results
            )
            s.flush()

    def list_results(self, run_id: str) -> list[CalculationResult]:
        with self._op("list_results") as s:
            rows = s.scalars(
                select(CalculationResultModel)
                .where(CalculationResultModel.run_id == run_id)
                .order_by(CalculationResultModel.calculation_id)
            ).all()
            return [r.to_dto() for r in rows]

    # Audit

    def pin_run_inputs(self, pinned: PinnedInputs) -> None:
        with self._op("pin_run_inputs") as s:
            s.execute(
                delete(RunPinnedInputsModel).where(
                    RunPinnedInputsModel.run_id == pinned.run_id
                )
            )
            s.add(
                RunPinnedInputsModel(
                    run_id=pinned.run_id,
                    rule_snapshots=list(pinned.rule_snapshots),
                    event_ids=list(pinned.event_ids),
                    vat_table=pinned.vat_table.to_dict(),
                    discounts=[d.to_dict() for d in pinned.discounts],
                    pinned_at=pinned.pinned_at,
                    created_by_id=self._actor_id,
                )
            )
            s.flush()

    def get_pinned_inputs(self, run_id: str) -> PinnedInputs | None:
        with self._op("get_pinned_inputs") as s:
            row = s.scalar(
                select(RunPinnedInputsModel).where(RunPinnedInputsModel.run_id == run_id)
            )
            if row is None:
                return None
            return PinnedInputs(
                run_id=row.run_id,
                rule_snapshots=tuple(row.rule_snapshots),
                event_ids=tuple(row.event_ids),
                vat_table=VatTable.from_dict(row.vat_table),
                discounts=tuple(Discount.from_dict(d) for d in row.discounts),
                pinned_at=row.pinned_at,
            )

    def record_execution(self, entry: ExecutionHistoryEntry) -> None:
        # SAVEPOINT: a failed history insert must not roll back the run's
        # transaction.
        with self._op("record_execution") as s, s.begin_nested():
            row = ExecutionHistoryModel.from_dto(entry)
            row.created_by_id = self._actor_id
            s.add(row)
            s.flush()

    def list_execution_history(self, run_id: str) -> list[ExecutionHistoryEntry]:
        with self._op("list_execution_history") as s:
            rows = s.scalars(
                select(ExecutionHistoryModel)
                .where(ExecutionHistoryModel.run_id == run_id)
                .order_by(ExecutionHistoryModel.recorded_at)
            ).all()
            return [r.to_dto() for r in rows]

    def save_lock_checksums(self, run_id: str, checksums: list[ShapeChecksum]) -> None:
        with self._op("save_lock_checksums") as s:
            s.execute(delete(LockChecksumModel).where(LockChecksumModel.run_id == run_id))
            s.add_all(
                LockChecksumModel(
                    run_id=run_id,
                    shape=c.shape,
                    checksum=c.checksum,
                    row_count=c.row_count,
                    created_by_id=self._actor_id,
                )
                for c in checksums
            )
            s.flush()

    def get_lock_checksums(self, run_id: str) -> dict[str, ShapeChecksum]:
        with self._op("get_lock_checksums") as s:
            rows = s.scalars(
                select(LockChecksumModel).where(LockChecksumModel.run_id == run_id)
            ).all()
            return {
                r.shape: ShapeChecksum(shape=r.shape, checksum=r.checksum, row_count=r.row_count)
                for r in rows
            }

    def save_lock(self, run: CalculationRun, checksums: list[ShapeChecksum]) -> None:
        with self._op("save_lock") as s, s.begin_nested():
            self.save_run(run)
            self.save_lock_checksums(run.id, checksums)

    def record_export_job(self, job: ExportJob) -> None:
        with self._op("record_export_job") as s:
            s.add(
                ExportJobModel(
                    run_id=job.run_id,
                    shape=job.shape,
                    checksum=job.checksum,
                    row_count=job.row_count,
                    rounding_diff=job.rounding_diff,
                    exported_at=job.exported_at,
                    created_by_id=self._actor_id,
                )
            )
            s.flush()

    def record_replay(self, record: ReplayRecord) -> None:
        with self._op("record_replay") as s:
            s.add(
                ReplayReportModel(
                    run_id=record.run_id,
                    overall_status=record.overall_status,
                    report=record.report,
                    replayed_at=record.replayed_at,
                    created_by_id=self._actor_id,
                )
            )
            s.flush()

    def list_replays(self, run_id: str) -> list[ReplayRecord]:
        with self._op("list_replays") as s:
            rows = s.scalars(
                select(ReplayReportModel)
                .where(ReplayReportModel.run_id == run_id)
                .order_by(ReplayReportModel.replayed_at)
            ).all()
            return [
                ReplayRecord(
                    run_id=r.run_id,
                    overall_status=r.overall_status,
                    report=r.report,
                    replayed_at=r.replayed_at,
                )
                for r in rows
            ]
