"""
Tests for RunExecutor.

Verifies:
- A DRAFT run is priced, netted, persisted and moved to AWAITING_APPROVAL
- Totals are reduced from results; results are ordered by calculation_id
- Inputs are pinned before results are computed
- Run-level failures (no events, no rules, write failure) are reported, not raised
- Per-item errors, skips and structural warnings are collected
- Credits are consumed once per investor/fund; re-execution releases and
  re-allocates them, so no result carries more credit than it owes
- Execution history never blocks or fails a run
"""

from datetime import date

import pytest

from commission_kernel.domain.rules import EntityType, FixedTerms, VatMode
from commission_kernel.domain.runs import CalculationRun, ExecutionStatus, RunStatus
from commission_kernel.domain.values import DecimalValue
from commission_kernel.domain.validation import TierValidation
from commission_kernel.exceptions import (
    PersistenceError,
    RunNotFoundError,
    RunNotRecomputableError,
)
from commission_kernel.services.store import InMemoryCommissionStore
from commission_engines.evaluator import RuleEvaluator
from commission_batch.domain.types import ItemStatus
from commission_batch.services.executor import RunExecutor
from commission_batch.services.lifecycle import RunLifecycleService
from tests.conftest import (
    D,
    TEST_ACTOR_ID,
    VAT_TABLE,
    build_seeded_store,
    make_credit,
    make_event,
    make_rule,
    make_tiered_terms,
)


def make_executor(store, clock, **kwargs):
    kwargs.setdefault("batch_size", 2)
    kwargs.setdefault("max_workers", 4)
    kwargs.setdefault("history_in_background", False)
    return RunExecutor(
        store=store, vat_table=VAT_TABLE, clock=clock, actor_id=TEST_ACTOR_ID, **kwargs
    )


def by_key(result):
    return {(r.event_id, r.entity_type): r for r in result.results}


class TestExecuteRun:
    """Happy path over the seeded run."""

    def test_run_succeeds(self, seeded_store, clock):
        result = make_executor(seeded_store, clock).execute_run("RUN-1")
        assert result.success
        assert result.status is RunStatus.AWAITING_APPROVAL
        assert result.errors == ()
        assert result.skipped == ()
        assert len(result.results) == 4

    def test_amounts(self, seeded_store, clock):
        results = by_key(make_executor(seeded_store, clock).execute_run("RUN-1"))
        dist = results[("E1", EntityType.DISTRIBUTOR)]
        assert dist.gross_commission == D("1750")
        assert dist.vat_amount == D("297.5")
        assert dist.total_payable == D("2047.5")
        assert dist.tier_applied == 2
        assert results[("E1", EntityType.REFERRER)].gross_commission == D("250")
        assert results[("E2", EntityType.DISTRIBUTOR)].total_payable == D("585")
        assert results[("E3", EntityType.DISTRIBUTOR)].vat_amount == D("34")

    def test_totals(self, seeded_store, clock):
        result = make_executor(seeded_store, clock).execute_run("RUN-1")
        assert result.totals.total_gross == D("2700")
        assert result.totals.total_vat == D("416.5")
        assert result.totals.total_net == D("2700")
        assert result.totals.total_payable == D("3116.5")
        assert result.totals.result_count == 4

    def test_run_persisted(self, seeded_store, clock):
        make_executor(seeded_store, clock).execute_run("RUN-1")
        run = seeded_store.get_run("RUN-1")
        assert run.status is RunStatus.AWAITING_APPROVAL
        assert run.totals.total_gross == D("2700")
        assert len(seeded_store.list_results("RUN-1")) == 4

    def test_results_sorted_by_calculation_id(self, seeded_store, clock):
        result = make_executor(seeded_store, clock).execute_run("RUN-1")
        ids = [r.calculation_id for r in result.results]
        assert ids == sorted(ids)

    def test_results_carry_actor_and_timestamps(self, seeded_store, clock):
        result = make_executor(seeded_store, clock).execute_run("RUN-1", actor_id="alice")
        first = result.results[0]
        assert first.actor_id == "alice"
        assert first.calculated_at == clock.now()
        assert first.started_at is not None
        assert first.finished_at is not None

    def test_inputs_pinned(self, seeded_store, clock):
        make_executor(seeded_store, clock).execute_run("RUN-1")
        pinned = seeded_store.get_pinned_inputs("RUN-1")
        assert pinned.event_ids == ("E1", "E2", "E3")
        assert pinned.rule_keys() == {("DIST-TIER", 1), ("REF-FIXED", 1)}
        assert pinned.vat_table == VAT_TABLE

    def test_history_recorded_per_rule_evaluation(self, seeded_store, clock):
        make_executor(seeded_store, clock).execute_run("RUN-1")
        history = seeded_store.execution_history
        assert len(history) == 4
        assert all(h.status is ExecutionStatus.SUCCESS for h in history)

    def test_background_history_is_flushed(self, seeded_store, clock):
        make_executor(seeded_store, clock, history_in_background=True).execute_run("RUN-1")
        assert len(seeded_store.execution_history) == 4

    def test_execution_logged(self, seeded_store, clock, captured_logs):
        make_executor(seeded_store, clock).execute_run("RUN-1")
        logs = captured_logs()
        started = [r for r in logs if r["message"] == "run_execution_started"]
        completed = [r for r in logs if r["message"] == "run_execution_completed"]
        assert started[0]["run_id"] == "RUN-1"
        assert completed[0]["result_count"] == 4
        assert completed[0]["total_gross"] == "2700"

    def test_worker_count_does_not_change_results(self, clock):
        sequential = make_executor(build_seeded_store(), clock, max_workers=1, batch_size=1)
        parallel = make_executor(build_seeded_store(), clock, max_workers=8, batch_size=1)
        a = sequential.execute_run("RUN-1")
        b = parallel.execute_run("RUN-1")
        assert [r.to_dict() for r in a.results] == [r.to_dict() for r in b.results]
        assert a.totals == b.totals


class TestRunPreconditions:
    def test_unknown_run(self, store, clock):
        with pytest.raises(RunNotFoundError):
            make_executor(store, clock).execute_run("NOPE")

    @pytest.mark.parametrize(
        "status", [RunStatus.AWAITING_APPROVAL, RunStatus.APPROVED, RunStatus.LOCKED, RunStatus.CANCELLED]
    )
    def test_not_recomputable(self, store, clock, status):
        store.save_run(CalculationRun(id="RUN-X", name="x", status=status))
        with pytest.raises(RunNotRecomputableError):
            make_executor(store, clock).execute_run("RUN-X")

    def test_no_events(self, store, clock):
        store.save_run(CalculationRun(id="RUN-E", name="empty"))
        store.save_rule(make_rule())
        result = make_executor(store, clock).execute_run("RUN-E")
        assert not result.success
        assert result.errors[0].code == "NO_EVENTS"
        assert store.get_run("RUN-E").status is RunStatus.DRAFT

    def test_no_active_rules(self, store, clock):
        store.save_run(CalculationRun(id="RUN-R", name="no rules"))
        store.add_events([make_event()], run_id="RUN-R")
        store.save_rule(make_rule(is_active=False))
        result = make_executor(store, clock).execute_run("RUN-R")
        assert not result.success
        assert result.errors[0].code == "NO_ACTIVE_RULES"
        assert store.get_run("RUN-R").status is RunStatus.DRAFT

    def test_only_invalid_rules(self, store, clock):
        store.save_run(CalculationRun(id="RUN-R", name="bad rules"))
        store.add_events([make_event()], run_id="RUN-R")
        store.save_rule(make_rule(terms=make_tiered_terms(("0", "100", "0.01"))))
        result = make_executor(store, clock).execute_run("RUN-R")
        assert result.errors[0].code == "NO_ACTIVE_RULES"
        assert result.warnings[0].code == "RULE_VALIDATION_FAILED"


class TestItemOutcomes:
    def test_invalid_rule_excluded_with_warning(self, seeded_store, clock):
        seeded_store.save_rule(
            make_rule(
                "GAPPY",
                priority=1,
                terms=make_tiered_terms(("0", "100", "0.5"), ("200", None, "0.5")),
            )
        )
        result = make_executor(seeded_store, clock).execute_run("RUN-1")
        assert result.success
        warning = result.warnings[0]
        assert warning.status is ItemStatus.WARNING
        assert warning.code == "RULE_VALIDATION_FAILED"
        assert warning.item_key == "GAPPY@1"
        assert all(r.rule_id != "GAPPY" for r in result.results)

    def test_warn_mode_keeps_rule(self, seeded_store, clock):
        seeded_store.save_rule(
            make_rule(
                "GAPPY",
                priority=1,
                terms=make_tiered_terms(("0", "100", "0.5"), ("200", None, "0.001")),
            )
        )
        executor = make_executor(seeded_store, clock, tier_validation=TierValidation.WARN)
        result = executor.execute_run("RUN-1")
        assert result.warnings[0].code == "RULE_VALIDATION_WARNING"
        assert by_key(result)[("E1", EntityType.DISTRIBUTOR)].rule_id == "GAPPY"

    def test_unpriced_role_is_skipped(self, seeded_store, clock):
        seeded_store.add_events(
            [make_event("E4", "1000", date(2024, 3, 10), partner="Partner X")], run_id="RUN-1"
        )
        result = make_executor(seeded_store, clock).execute_run("RUN-1")
        assert [s.item_key for s in result.skipped] == ["E4:partner"]
        assert result.skipped[0].code == "NO_APPLICABLE_RULE"

    def test_calculation_error_fails_item_only(self, seeded_store, clock):
        seeded_store.save_rule(
            make_rule(
                "REF-VAT",
                entity_type=EntityType.REFERRER,
                terms=FixedTerms(fixed_amount="10"),
                vat_mode=VatMode.ADDED,
                vat_jurisdiction="XX",
                priority=1,
            )
        )
        result = make_executor(seeded_store, clock).execute_run("RUN-1")
        assert result.success
        assert [e.code for e in result.errors] == ["VAT_RATE_NOT_FOUND"]
        assert result.errors[0].item_key == "E1:referrer"
        # The next rule in priority order still prices the referrer
        assert by_key(result)[("E1", EntityType.REFERRER)].rule_id == "REF-FIXED"
        statuses = [h.status for h in seeded_store.execution_history if h.rule_id == "REF-VAT"]
        assert statuses == [ExecutionStatus.FAILED]

    def test_unexpected_exception_is_collected(self, seeded_store, clock):
        class ExplodingEvaluator(RuleEvaluator):
            def select_rule(self, rules, context):
                if context.event.id == "E2":
                    raise RuntimeError("boom")
                return super().select_rule(rules, context)

        result = make_executor(
            seeded_store, clock, evaluator=ExplodingEvaluator()
        ).execute_run("RUN-1")
        assert result.success
        assert [(e.code, e.event_id) for e in result.errors] == [("UNHANDLED_EXCEPTION", "E2")]
        assert len(result.results) == 3


class TestCredits:
    def test_credit_applied_once(self, seeded_store, clock):
        seeded_store.add_credit(make_credit("C1", "500"))
        result = make_executor(seeded_store, clock).execute_run("RUN-1")
        applied = [r for r in result.results if r.credits_applied.is_positive]
        assert len(applied) == 1
        assert applied[0].credits_applied == D("500")
        assert applied[0].total_payable == applied[0].amount_due - D("500")
        assert result.totals.total_credits_applied == D("500")
        assert result.totals.total_payable == D("2616.5")
        assert seeded_store.get_credit("C1").remaining_balance == D("0")

    def test_credit_goes_to_earliest_event(self, seeded_store, clock):
        seeded_store.add_credit(make_credit("C1", "100"))
        results = by_key(make_executor(seeded_store, clock).execute_run("RUN-1"))
        assert results[("E1", EntityType.DISTRIBUTOR)].credits_applied == D("100")
        assert results[("E3", EntityType.DISTRIBUTOR)].credits_applied == D("0")

    def test_re_execution_releases_and_reapplies(self, seeded_store, clock, captured_logs):
        seeded_store.add_credit(make_credit("C1", "500"))
        executor = make_executor(seeded_store, clock)
        executor.execute_run("RUN-1")
        RunLifecycleService(seeded_store, clock).reject("RUN-1", TEST_ACTOR_ID, "recheck")

        again = executor.execute_run("RUN-1")
        assert again.success
        assert by_key(again)[("E1", EntityType.DISTRIBUTOR)].credits_applied == D("500")
        assert again.totals.total_credits_applied == D("500")
        assert again.totals.total_payable == D("2616.5")
        assert seeded_store.get_credit("C1").remaining_balance == D("0")
        released = [r for r in captured_logs() if r["message"] == "prior_credits_released"]
        assert len(released) == 1
        assert D(released[0]["amount_released"]) == D("500")

    def test_re_execution_with_smaller_amount_due_returns_surplus(self, seeded_store, clock):
        seeded_store.add_credit(make_credit("C1", "5000"))
        executor = make_executor(seeded_store, clock)
        first = executor.execute_run("RUN-1")
        first_applied = first.totals.total_credits_applied
        RunLifecycleService(seeded_store, clock).reject("RUN-1", TEST_ACTOR_ID)
        seeded_store.save_rule(
            make_rule("CHEAP", priority=1, terms=FixedTerms(fixed_amount=D("100")))
        )

        again = executor.execute_run("RUN-1")

        assert again.success
        for r in again.results:
            assert r.credits_applied <= r.amount_due
            assert not r.total_payable.is_negative
        investor_a_due = DecimalValue.sum(
            r.amount_due for r in again.results if r.event_id in ("E1", "E3")
        )
        assert again.totals.total_credits_applied == investor_a_due
        assert again.totals.total_credits_applied < first_applied
        assert seeded_store.get_credit("C1").remaining_balance == D("5000") - investor_a_due

    def test_surplus_credit_flows_to_later_events(self, seeded_store, clock):
        seeded_store.add_credit(make_credit("C1", "2100"))
        executor = make_executor(seeded_store, clock)
        first = by_key(executor.execute_run("RUN-1"))
        assert first[("E1", EntityType.DISTRIBUTOR)].credits_applied == D("2047.5")
        RunLifecycleService(seeded_store, clock).reject("RUN-1", TEST_ACTOR_ID)
        seeded_store.save_rule(
            make_rule("CHEAP", priority=1, terms=FixedTerms(fixed_amount=D("100")))
        )

        again = executor.execute_run("RUN-1")

        total_applied = DecimalValue.sum(r.credits_applied for r in again.results)
        assert total_applied == D("2100") - seeded_store.get_credit("C1").remaining_balance
        e1 = by_key(again)[("E1", EntityType.DISTRIBUTOR)]
        assert e1.credits_applied == e1.amount_due
        assert by_key(again)[("E3", EntityType.DISTRIBUTOR)].credits_applied.is_positive

    def test_credit_write_failure_recorded_per_item(self, clock):
        store = _seed_into(FailingConsumeStore())
        store.add_credit(make_credit("C1", "500"))

        result = make_executor(store, clock).execute_run("RUN-1")

        assert result.success
        assert store.get_credit("C1").remaining_balance == D("500")
        failed = {(e.event_id, e.entity_type) for e in result.errors}
        assert ("E1", "distributor") in failed
        assert all(e.code == "PERSISTENCE_ERROR" for e in result.errors)
        assert all(r.event_id == "E2" for r in result.results)


class FailingResultsStore(InMemoryCommissionStore):
    def replace_results(self, run_id, results):
        raise PersistenceError("replace_results", "disk full")


class FailingConsumeStore(InMemoryCommissionStore):
    def consume_credits(self, applications):
        raise PersistenceError("consume_credits", "deadlock detected")


class FailingHistoryStore(InMemoryCommissionStore):
    def record_execution(self, entry):
        raise PersistenceError("record_execution", "history table locked")


def _seed_into(store: InMemoryCommissionStore) -> InMemoryCommissionStore:
    source = build_seeded_store()
    store.save_run(source.get_run("RUN-1"))
    store.add_events(source.list_run_events("RUN-1"), run_id="RUN-1")
    for rule in source.list_active_rules():
        store.save_rule(rule)
    return store


class TestPersistenceFailures:
    def test_results_write_failure_reported(self, clock, captured_logs):
        store = _seed_into(FailingResultsStore())
        result = make_executor(store, clock).execute_run("RUN-1")
        assert not result.success
        assert result.errors[0].code == "PERSISTENCE_ERROR"
        assert store.get_run("RUN-1").status is RunStatus.IN_PROGRESS
        assert any(r["message"] == "run_results_write_failed" for r in captured_logs())

    def test_history_failure_does_not_fail_run(self, clock, captured_logs):
        store = _seed_into(FailingHistoryStore())
        result = make_executor(store, clock).execute_run("RUN-1")
        assert result.success
        assert len(result.results) == 4
        failures = [r for r in captured_logs() if r["message"] == "execution_history_write_failed"]
        assert len(failures) == 4
