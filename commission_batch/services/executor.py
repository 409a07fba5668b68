"""
RunExecutor -- execute a commission run over its distribution events.

Contract:
    ``execute_run(run_id)`` prices every event x populated role of a
    DRAFT or IN_PROGRESS run, nets credits, persists results and totals,
    and moves the run to AWAITING_APPROVAL.

Architecture: commission_batch/services.  Imports from commission_engines,
    commission_kernel services and the batch DTOs.

Invariants enforced:
    - Only DRAFT / IN_PROGRESS runs are executed (``RunNotRecomputableError``).
    - Rules failing structural validation are excluded with a warning.
    - Inputs (rule snapshots, event ids, VAT table, discounts) are pinned
      before any result is computed.
    - Events are grouped by ``(investor_name, fund_name)``; a group is never
      split across workers, and the ledger applier holds a per-key lock, so
      credit consumption for one investor/fund is serialized.
    - Per-item failures are collected, never thrown past the batch.
    - Results are sorted by ``calculation_id`` before totals are reduced, so
      totals do not depend on worker scheduling.
    - Re-executing an IN_PROGRESS run first releases every credit application
      recorded on its previous results, then allocates FIFO afresh, so a
      result never carries more credit than its amount due.

Failure modes:
    - ``RunNotFoundError`` / ``RunNotRecomputableError`` -- raised.
    - ``PersistenceError`` while reading events or rules -- raised.
    - No events, no valid rules, a credit release failure or a write
      failure -- reported in a ``RunExecutionResult`` with ``success=False``.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from commission_kernel.domain.clock import Clock, SystemClock
from commission_kernel.domain.records import Discount, DistributionEvent
from commission_kernel.domain.results import CalculationResult
from commission_kernel.domain.rules import Rule
from commission_kernel.domain.runs import (
    CalculationRun,
    ExecutionHistoryEntry,
    ExecutionStatus,
    RunStatus,
    RunTotals,
)
from commission_kernel.domain.validation import TierValidation, validate_rule
from commission_kernel.domain.vat import VatTable
from commission_kernel.exceptions import (
    CommissionKernelError,
    CreditError,
    PersistenceError,
    RunNotRecomputableError,
)
from commission_kernel.logging_config import LogContext, get_logger
from commission_kernel.services.history import ExecutionHistoryRecorder
from commission_kernel.services.store import CommissionStore, PinnedInputs
from commission_engines.credits import LedgerCreditApplier
from commission_engines.evaluator import EvaluationOutcome, RuleEvaluator
from commission_engines.pricing import EventPricer, PricedRole, build_result

from commission_batch.domain.types import ItemOutcome, RunExecutionResult

logger = get_logger("batch.executor")


@dataclass
class _BatchOutput:
    results: list[CalculationResult] = field(default_factory=list)
    errors: list[ItemOutcome] = field(default_factory=list)
    warnings: list[ItemOutcome] = field(default_factory=list)
    skipped: list[ItemOutcome] = field(default_factory=list)


class RunExecutor:
    """Run execution engine with bounded worker concurrency.

    Contract:
        - ``execute_run()`` runs the full pipeline for one run.
        - The caller owns transaction boundaries; nothing here commits.

    Non-goals:
        - Does NOT prevent two callers from executing the same run at once;
          the orchestrating caller guarantees one IN_PROGRESS execution.
    """

    def __init__(
        self,
        store: CommissionStore,
        vat_table: VatTable,
        clock: Clock | None = None,
        evaluator: RuleEvaluator | None = None,
        credit_applier: LedgerCreditApplier | None = None,
        batch_size: int = 10,
        max_workers: int = 4,
        tier_validation: TierValidation = TierValidation.STRICT,
        actor_id: str = "system",
        history_in_background: bool = True,
    ):
        self._store = store
        self._vat_table = vat_table
        self._clock = clock or SystemClock()
        self._evaluator = evaluator or RuleEvaluator()
        self._credits = credit_applier or LedgerCreditApplier(store)
        self._batch_size = batch_size
        self._max_workers = max_workers
        self._tier_validation = TierValidation(tier_validation)
        self._actor_id = actor_id
        self._history_in_background = history_in_background

    # -------------------------------------------------------------------------
    # Execute
    # -------------------------------------------------------------------------

    def execute_run(self, run_id: str, actor_id: str | None = None) -> RunExecutionResult:
        """Execute a run.

        Raises:
            RunNotFoundError: If run_id does not exist.
            RunNotRecomputableError: If the run is past IN_PROGRESS.
            PersistenceError: If events or rules cannot be read.
        """
        start_time = time.monotonic()
        started_at = self._clock.now()
        actor = actor_id or self._actor_id

        run = self._store.get_run(run_id)
        if not run.is_recomputable:
            raise RunNotRecomputableError(run_id, run.status.value)

        with LogContext.bind(run_id=run_id, actor_id=actor):
            logger.info(
                "run_execution_started",
                extra={"run_id": run_id, "status": run.status.value, "actor_id": actor},
            )

            events = self._store.list_run_events(run_id)
            rules = self._store.list_active_rules()

            if not events:
                return self._fail(
                    run, "NO_EVENTS", "Run has no distribution events",
                    start_time, started_at,
                )

            valid_rules, warnings = self._validate_rules(rules)
            if not valid_rules:
                return self._fail(
                    run, "NO_ACTIVE_RULES", "No active rule passed validation",
                    start_time, started_at, warnings=warnings,
                )

            prior = self._store.list_results(run_id)
            discounts = self._collect_discounts(events)

            try:
                run = run.transition_to(RunStatus.IN_PROGRESS, self._clock.now())
                self._store.save_run(run)
                self._store.pin_run_inputs(
                    PinnedInputs(
                        run_id=run_id,
                        rule_snapshots=tuple(r.snapshot() for r in valid_rules),
                        event_ids=tuple(e.id for e in events),
                        vat_table=self._vat_table,
                        discounts=discounts,
                        pinned_at=self._clock.now(),
                    )
                )
                self._release_prior_credits(run_id, prior)
            except (PersistenceError, CreditError) as exc:
                return self._fail(
                    run, exc.code, str(exc), start_time, started_at, warnings=warnings,
                )

            pricer = EventPricer(
                rules=valid_rules,
                vat_table=self._vat_table,
                events=events,
                discounts=discounts,
                evaluator=self._evaluator,
            )

            output = _BatchOutput(warnings=list(warnings))
            batches = self._batches(events)
            with ExecutionHistoryRecorder(
                self._store, background=self._history_in_background
            ) as recorder:
                with ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="commission-run"
                ) as pool:
                    futures = [
                        pool.submit(
                            self._process_batch, run_id, actor, batch, pricer, recorder
                        )
                        for batch in batches
                    ]
                    for future in futures:
                        part = future.result()
                        output.results.extend(part.results)
                        output.errors.extend(part.errors)
                        output.warnings.extend(part.warnings)
                        output.skipped.extend(part.skipped)

            results = sorted(output.results, key=lambda r: r.calculation_id)
            totals = RunTotals.from_results(results)

            try:
                self._store.replace_results(run_id, results)
                completed = run.transition_to(
                    RunStatus.AWAITING_APPROVAL, self._clock.now(), totals=totals
                )
                self._store.save_run(completed)
            except PersistenceError as exc:
                logger.error(
                    "run_results_write_failed",
                    extra={"run_id": run_id, "error": str(exc)},
                )
                return self._fail(
                    run, exc.code, str(exc), start_time, started_at,
                    warnings=output.warnings, errors=output.errors, results=results,
                )
            run = completed

            duration_ms = int((time.monotonic() - start_time) * 1000)
            logger.info(
                "run_execution_completed",
                extra={
                    "run_id": run_id,
                    "event_count": len(events),
                    "batch_count": len(batches),
                    "result_count": len(results),
                    "error_count": len(output.errors),
                    "warning_count": len(output.warnings),
                    "skipped_count": len(output.skipped),
                    "total_gross": str(totals.total_gross),
                    "total_vat": str(totals.total_vat),
                    "total_net": str(totals.total_net),
                    "total_payable": str(totals.total_payable),
                    "duration_ms": duration_ms,
                },
            )

            return RunExecutionResult(
                run_id=run_id,
                success=True,
                status=run.status,
                results=tuple(results),
                errors=tuple(output.errors),
                warnings=tuple(output.warnings),
                skipped=tuple(output.skipped),
                totals=totals,
                execution_time_ms=duration_ms,
                started_at=started_at,
                completed_at=self._clock.now(),
            )

    # -------------------------------------------------------------------------
    # Per-batch work (runs on worker threads)
    # -------------------------------------------------------------------------

    def _process_batch(
        self,
        run_id: str,
        actor: str,
        events: Sequence[DistributionEvent],
        pricer: EventPricer,
        recorder: ExecutionHistoryRecorder,
    ) -> _BatchOutput:
        output = _BatchOutput()
        with LogContext.bind(run_id=run_id, actor_id=actor):
            for event in events:
                with LogContext.bind(event_id=event.id):
                    self._process_event(run_id, actor, event, pricer, recorder, output)
        return output

    def _process_event(
        self,
        run_id: str,
        actor: str,
        event: DistributionEvent,
        pricer: EventPricer,
        recorder: ExecutionHistoryRecorder,
        output: _BatchOutput,
    ) -> None:
        started_at = self._clock.now()
        try:
            priced_roles = pricer.price(event)
        except Exception as exc:
            logger.exception("event_pricing_failed", extra={"event_id": event.id})
            output.errors.append(
                ItemOutcome.failed(
                    "UNHANDLED_EXCEPTION", str(exc), item_key=event.id, event_id=event.id
                )
            )
            return

        for priced in priced_roles:
            for outcome in priced.selection.outcomes:
                recorder.record(self._history_entry(run_id, priced, outcome))
                if outcome.failed:
                    output.errors.append(
                        ItemOutcome.failed(
                            outcome.error_code or "EVALUATION_ERROR",
                            outcome.error_message or "",
                            item_key=priced.item_key,
                            event_id=event.id,
                            entity_type=priced.entity_type.value,
                            rule_id=outcome.rule.id,
                            rule_version=outcome.rule.version,
                        )
                    )

            selected = priced.selection.selected
            if selected is None or selected.calculation is None:
                output.skipped.append(
                    ItemOutcome.skipped(
                        "NO_APPLICABLE_RULE",
                        f"No rule applied to {priced.entity_type.value} {priced.entity_name}",
                        item_key=priced.item_key,
                        event_id=event.id,
                        entity_type=priced.entity_type.value,
                    )
                )
                continue

            try:
                result = self._finalize(run_id, actor, priced, selected, started_at)
            except CommissionKernelError as exc:
                code = exc.code
                message = str(exc)
            except Exception as exc:
                logger.exception("calculation_finalize_failed", extra={"event_id": event.id})
                code = "UNHANDLED_EXCEPTION"
                message = str(exc)
            else:
                output.results.append(result)
                continue

            output.errors.append(
                ItemOutcome.failed(
                    code,
                    message,
                    item_key=priced.item_key,
                    event_id=event.id,
                    entity_type=priced.entity_type.value,
                    rule_id=selected.rule.id,
                    rule_version=selected.rule.version,
                )
            )

    def _finalize(
        self,
        run_id: str,
        actor: str,
        priced: PricedRole,
        selected: EvaluationOutcome,
        started_at: datetime,
    ) -> CalculationResult:
        computation = selected.calculation
        assert computation is not None
        allocation = self._credits.apply(priced.event.investor_key, computation.amount_due)
        computation = computation.with_credits(allocation)
        return build_result(
            run_id=run_id,
            priced=priced,
            computation=computation,
            rule=selected.rule,
            calculated_at=self._clock.now(),
            actor_id=actor,
            started_at=started_at,
            finished_at=self._clock.now(),
        )

    def _history_entry(
        self, run_id: str, priced: PricedRole, outcome: EvaluationOutcome
    ) -> ExecutionHistoryEntry:
        if outcome.applicable:
            status = ExecutionStatus.SUCCESS
        elif outcome.failed:
            status = ExecutionStatus.FAILED
        else:
            status = ExecutionStatus.SKIPPED
        return ExecutionHistoryEntry(
            run_id=run_id,
            rule_id=outcome.rule.id,
            rule_version=outcome.rule.version,
            event_id=priced.event.id,
            entity_type=priced.entity_type,
            entity_name=priced.entity_name,
            status=status,
            duration_ms=outcome.execution_time_ms,
            recorded_at=self._clock.now(),
            skip_reason=outcome.skip_reason.value if outcome.skip_reason else None,
            error_message=outcome.error_message,
            conditions_evaluated=tuple(c.to_dict() for c in outcome.checks),
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _validate_rules(self, rules: Sequence[Rule]) -> tuple[list[Rule], list[ItemOutcome]]:
        valid: list[Rule] = []
        warnings: list[ItemOutcome] = []
        for rule in rules:
            result = validate_rule(rule, self._tier_validation)
            key = f"{rule.id}@{rule.version}"
            for message in result.warnings:
                warnings.append(
                    ItemOutcome.warning(
                        "RULE_VALIDATION_WARNING", message, item_key=key,
                        rule_id=rule.id, rule_version=rule.version,
                    )
                )
            if not result.is_valid:
                logger.warning(
                    "rule_excluded",
                    extra={
                        "rule_id": rule.id,
                        "rule_version": rule.version,
                        "issues": list(result.errors),
                    },
                )
                warnings.append(
                    ItemOutcome.warning(
                        "RULE_VALIDATION_FAILED", "; ".join(result.errors), item_key=key,
                        rule_id=rule.id, rule_version=rule.version,
                    )
                )
                continue
            valid.append(rule)
        return valid, warnings

    def _release_prior_credits(
        self, run_id: str, prior: Sequence[CalculationResult]
    ) -> None:
        applications = [a for result in prior for a in result.credit_applications]
        if not applications:
            return
        released = self._credits.release(applications)
        logger.info(
            "prior_credits_released",
            extra={
                "run_id": run_id,
                "result_count": len(prior),
                "application_count": len(applications),
                "amount_released": str(released),
            },
        )

    def _collect_discounts(self, events: Sequence[DistributionEvent]) -> tuple[Discount, ...]:
        found: dict[str, Discount] = {}
        for event in events:
            for discount in self._store.list_discounts(
                event.investor_name, event.fund_name, event.date
            ):
                found[discount.id] = discount
        return tuple(sorted(found.values(), key=lambda d: (d.effective_date, d.id)))

    def _batches(self, events: Sequence[DistributionEvent]) -> list[list[DistributionEvent]]:
        """Pack investor/fund groups into batches of about ``batch_size`` events."""
        groups: OrderedDict[tuple[str, str], list[DistributionEvent]] = OrderedDict()
        for event in sorted(events, key=lambda e: e.sort_key):
            groups.setdefault(event.investor_key, []).append(event)

        batches: list[list[DistributionEvent]] = []
        current: list[DistributionEvent] = []
        for group in groups.values():
            current.extend(group)
            if len(current) >= self._batch_size:
                batches.append(current)
                current = []
        if current:
            batches.append(current)
        return batches

    def _fail(
        self,
        run: CalculationRun,
        code: str,
        message: str,
        start_time: float,
        started_at: datetime,
        warnings: Sequence[ItemOutcome] = (),
        errors: Sequence[ItemOutcome] = (),
        results: Sequence[CalculationResult] = (),
    ) -> RunExecutionResult:
        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.error(
            "run_execution_failed",
            extra={"run_id": run.id, "error_code": code, "error": message},
        )
        return RunExecutionResult(
            run_id=run.id,
            success=False,
            status=run.status,
            results=tuple(results),
            errors=(ItemOutcome.failed(code, message, item_key=run.id), *errors),
            warnings=tuple(warnings),
            execution_time_ms=duration_ms,
            started_at=started_at,
            completed_at=self._clock.now(),
        )
