"""
CommissionStore protocol, supporting DTOs, and an in-memory implementation.

Contract:
    ``CommissionStore`` is everything the engine reads from and writes to the
    persistence collaborator.  Implementations must:

    - return events in ``(date, id)`` order and credits in FIFO
      ``(date_posted, id)`` order;
    - return only credits with a positive remaining balance;
    - raise ``RunNotFoundError`` / ``RuleNotFoundError`` for unknown keys;
    - apply ``consume_credits`` / ``release_credits`` and ``save_lock``
      all-or-nothing: a failure leaves every credit and the run untouched;
    - raise ``RuleImmutableError`` when different content is saved under a
      ``(rule_id, version)`` that a run has pinned;
    - raise ``PersistenceError`` when the backend itself fails.

    ``InMemoryCommissionStore`` is the dict-backed reference implementation,
    used by tests and by callers that assemble inputs in memory.  It is
    safe to call from several threads.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Iterable, Protocol, Sequence, runtime_checkable

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
    CreditError,
    CreditOverdrawError,
    RuleImmutableError,
    RuleNotFoundError,
    RunNotFoundError,
)


# =============================================================================
# Supporting DTOs
# =============================================================================


@dataclass(frozen=True)
class PinnedInputs:
    """Inputs frozen into a run at execution time; replay reads only these."""

    run_id: str
    rule_snapshots: tuple[dict[str, Any], ...]
    event_ids: tuple[str, ...]
    vat_table: VatTable
    discounts: tuple[Discount, ...]
    pinned_at: datetime

    def rule_keys(self) -> set[tuple[str, int]]:
        return {(s["id"], int(s["version"])) for s in self.rule_snapshots}


@dataclass(frozen=True)
class ShapeChecksum:
    shape: str
    checksum: str
    row_count: int


@dataclass(frozen=True)
class ExportJob:
    run_id: str
    shape: str
    checksum: str
    row_count: int
    rounding_diff: DecimalValue
    exported_at: datetime


@dataclass(frozen=True)
class ReplayRecord:
    run_id: str
    overall_status: str
    report: dict[str, Any]
    replayed_at: datetime


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class CommissionStore(Protocol):
    """Persistence collaborator interface."""

    # Runs
    def get_run(self, run_id: str) -> CalculationRun: ...

    def save_run(self, run: CalculationRun) -> None: ...

    # Events
    def list_run_events(self, run_id: str) -> list[DistributionEvent]: ...

    def get_events(self, event_ids: Iterable[str]) -> list[DistributionEvent]: ...

    # Rules
    def list_active_rules(self) -> list[Rule]: ...

    def get_rule(self, rule_id: str, version: int) -> Rule: ...

    def save_rule(self, rule: Rule) -> None: ...

    # Credits and discounts
    def list_credits(self, investor_name: str, fund_name: str) -> list[Credit]: ...

    def update_credit_balance(self, credit_id: str, new_balance: DecimalValue) -> None: ...

    def consume_credits(self, applications: Sequence[CreditApplication]) -> None: ...

    def release_credits(self, applications: Sequence[CreditApplication]) -> None: ...

    def list_discounts(
        self, investor_name: str, fund_name: str, on_date: date
    ) -> list[Discount]: ...

    # Results
    def replace_results(self, run_id: str, results: list[CalculationResult]) -> None: ...

    def list_results(self, run_id: str) -> list[CalculationResult]: ...

    # Audit
    def pin_run_inputs(self, pinned: PinnedInputs) -> None: ...

    def get_pinned_inputs(self, run_id: str) -> PinnedInputs | None: ...

    def record_execution(self, entry: ExecutionHistoryEntry) -> None: ...

    def save_lock_checksums(self, run_id: str, checksums: list[ShapeChecksum]) -> None: ...

    def get_lock_checksums(self, run_id: str) -> dict[str, ShapeChecksum]: ...

    def save_lock(self, run: CalculationRun, checksums: list[ShapeChecksum]) -> None: ...

    def record_export_job(self, job: ExportJob) -> None: ...

    def record_replay(self, record: ReplayRecord) -> None: ...


# =============================================================================
# In-memory implementation
# =============================================================================


class InMemoryCommissionStore:
    """Dict-backed CommissionStore.  All methods hold one re-entrant lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._runs: dict[str, CalculationRun] = {}
        self._events: dict[str, DistributionEvent] = {}
        self._run_events: dict[str, list[str]] = {}
        self._rules: dict[tuple[str, int], Rule] = {}
        self._credits: dict[str, Credit] = {}
        self._discounts: dict[str, Discount] = {}
        self._results: dict[str, list[CalculationResult]] = {}
        self._pinned: dict[str, PinnedInputs] = {}
        self._lock_checksums: dict[str, dict[str, ShapeChecksum]] = {}
        self.execution_history: list[ExecutionHistoryEntry] = []
        self.export_jobs: list[ExportJob] = []
        self.replays: list[ReplayRecord] = []

    # Seeding

    def add_events(self, events: Iterable[DistributionEvent], run_id: str | None = None) -> None:
        with self._lock:
            for event in events:
                self._events[event.id] = event
                if run_id is not None:
                    linked = self._run_events.setdefault(run_id, [])
                    if event.id not in linked:
                        linked.append(event.id)

    def add_credit(self, credit: Credit) -> None:
        with self._lock:
            self._credits[credit.id] = credit

    def add_discount(self, discount: Discount) -> None:
        with self._lock:
            self._discounts[discount.id] = discount

    def get_credit(self, credit_id: str) -> Credit:
        with self._lock:
            return self._credits[credit_id]

    # Runs

    def get_run(self, run_id: str) -> CalculationRun:
        with self._lock:
            try:
                return self._runs[run_id]
            except KeyError:
                raise RunNotFoundError(run_id) from None

    def save_run(self, run: CalculationRun) -> None:
        with self._lock:
            self._runs[run.id] = run

    # Events

    def list_run_events(self, run_id: str) -> list[DistributionEvent]:
        with self._lock:
            ids = self._run_events.get(run_id, [])
            return sorted((self._events[i] for i in ids), key=lambda e: e.sort_key)

    def get_events(self, event_ids: Iterable[str]) -> list[DistributionEvent]:
        with self._lock:
            found = [self._events[i] for i in event_ids if i in self._events]
            return sorted(found, key=lambda e: e.sort_key)

    # Rules

    def list_active_rules(self) -> list[Rule]:
        with self._lock:
            rules = [r for r in self._rules.values() if r.is_active]
            return sorted(rules, key=lambda r: (r.priority, r.id, r.version))

    def get_rule(self, rule_id: str, version: int) -> Rule:
        with self._lock:
            try:
                return self._rules[(rule_id, version)]
            except KeyError:
                raise RuleNotFoundError(rule_id, version) from None

    def save_rule(self, rule: Rule) -> None:
        with self._lock:
            existing = self._rules.get(rule.key)
            if existing is not None and existing.checksum != rule.checksum:
                if self._is_pinned(rule.key):
                    raise RuleImmutableError(rule.id, rule.version)
            self._rules[rule.key] = rule

    def _is_pinned(self, key: tuple[str, int]) -> bool:
        return any(key in p.rule_keys() for p in self._pinned.values())

    # Credits and discounts

    def list_credits(self, investor_name: str, fund_name: str) -> list[Credit]:
        with self._lock:
            credits = [
                c for c in self._credits.values()
                if c.investor_name == investor_name
                and c.fund_name == fund_name
                and c.remaining_balance.is_positive
            ]
            return sorted(credits, key=lambda c: c.fifo_key)

    def update_credit_balance(self, credit_id: str, new_balance: DecimalValue) -> None:
        with self._lock:
            credit = self._credit(credit_id)
            _check_balance_update(credit, new_balance)
            self._credits[credit_id] = replace(credit, remaining_balance=new_balance)

    def consume_credits(self, applications: Sequence[CreditApplication]) -> None:
        with self._lock:
            staged: dict[str, Credit] = {}
            for application in applications:
                credit = staged.get(application.credit_id) or self._credit(
                    application.credit_id
                )
                new_balance = credit.remaining_balance - application.amount_applied
                _check_balance_update(credit, new_balance)
                staged[credit.id] = replace(credit, remaining_balance=new_balance)
            self._credits.update(staged)

    def release_credits(self, applications: Sequence[CreditApplication]) -> None:
        with self._lock:
            staged: dict[str, Credit] = {}
            for application in applications:
                _check_release(application)
                credit = staged.get(application.credit_id) or self._credit(
                    application.credit_id
                )
                staged[credit.id] = replace(
                    credit,
                    remaining_balance=credit.remaining_balance + application.amount_applied,
                )
            self._credits.update(staged)

    def _credit(self, credit_id: str) -> Credit:
        try:
            return self._credits[credit_id]
        except KeyError:
            raise CreditError(f"Credit not found: {credit_id}") from None

    def list_discounts(
        self, investor_name: str, fund_name: str, on_date: date
    ) -> list[Discount]:
        with self._lock:
            found = [
                d for d in self._discounts.values()
                if d.investor_name == investor_name
                and d.fund_name == fund_name
                and d.is_active_on(on_date)
            ]
            return sorted(found, key=lambda d: (d.effective_date, d.id))

    # Results

    def replace_results(self, run_id: str, results: list[CalculationResult]) -> None:
        with self._lock:
            self._results[run_id] = list(results)

    def list_results(self, run_id: str) -> list[CalculationResult]:
        with self._lock:
            return sorted(
                self._results.get(run_id, []), key=lambda r: r.calculation_id
            )

    # Audit

    def pin_run_inputs(self, pinned: PinnedInputs) -> None:
        with self._lock:
            self._pinned[pinned.run_id] = pinned

    def get_pinned_inputs(self, run_id: str) -> PinnedInputs | None:
        with self._lock:
            return self._pinned.get(run_id)

    def record_execution(self, entry: ExecutionHistoryEntry) -> None:
        with self._lock:
            self.execution_history.append(entry)

    def save_lock_checksums(self, run_id: str, checksums: list[ShapeChecksum]) -> None:
        with self._lock:
            self._lock_checksums[run_id] = {c.shape: c for c in checksums}

    def get_lock_checksums(self, run_id: str) -> dict[str, ShapeChecksum]:
        with self._lock:
            return dict(self._lock_checksums.get(run_id, {}))

    def save_lock(self, run: CalculationRun, checksums: list[ShapeChecksum]) -> None:
        with self._lock:
            previous = self._lock_checksums.get(run.id)
            self.save_lock_checksums(run.id, checksums)
            try:
                self.save_run(run)
            except Exception:
                if previous is None:
                    self._lock_checksums.pop(run.id, None)
                else:
                    self._lock_checksums[run.id] = previous
                raise

    def record_export_job(self, job: ExportJob) -> None:
        with self._lock:
            self.export_jobs.append(job)

    def record_replay(self, record: ReplayRecord) -> None:
        with self._lock:
            self.replays.append(record)


def _check_balance_update(credit: Credit, new_balance: DecimalValue) -> None:
    """Balances only decrease and never go below zero."""
    if new_balance.is_negative:
        raise CreditOverdrawError(
            credit.id,
            str(credit.remaining_balance),
            str(credit.remaining_balance - new_balance),
        )
    if new_balance > credit.remaining_balance:
        raise CreditError(
            f"Credit {credit.id} balance cannot increase "
            f"({credit.remaining_balance} -> {new_balance})"
        )


def _check_release(application: CreditApplication) -> None:
    if application.amount_applied.is_negative:
        raise CreditError(
            f"Cannot release a negative amount ({application.amount_applied}) "
            f"to credit {application.credit_id}"
        )
