"""
Tests for RunOrchestrator wiring.

Verifies:
- from_config() loads the bundled configuration when none is passed
- Factories hand every service the same store, clock and settings
- execute -> approve -> lock -> replay works end to end
"""

from commission_kernel.domain.runs import RunStatus
from commission_batch.orchestrator import RunOrchestrator
from commission_batch.services.executor import RunExecutor
from commission_reporting.replay import ShapeStatus
from tests.conftest import D, TEST_ACTOR_ID


class TestConstruction:
    def test_from_bundled_config(self, store, clock, captured_logs):
        orchestrator = RunOrchestrator.from_config(store, clock=clock)
        assert orchestrator.config.config_id == "default"
        assert orchestrator.config.settings.batch_size == 10
        assert any(r["message"] == "COMMISSION_CONFIG_TRACE" for r in captured_logs())

    def test_actor_defaults_to_config(self, store, test_config, clock):
        orchestrator = RunOrchestrator(store, test_config, clock=clock)
        assert orchestrator.create_executor()._actor_id == TEST_ACTOR_ID

    def test_explicit_actor_wins(self, store, test_config, clock):
        orchestrator = RunOrchestrator(store, test_config, clock=clock, actor_id="ops")
        assert orchestrator.create_executor()._actor_id == "ops"

    def test_factories_share_dependencies(self, store, test_config, clock):
        orchestrator = RunOrchestrator(store, test_config, clock=clock)
        executor = orchestrator.create_executor()
        assert isinstance(executor, RunExecutor)
        assert executor._store is store
        assert executor._clock is clock
        assert executor._batch_size == 2
        assert orchestrator.create_lifecycle()._clock is clock
        assert orchestrator.create_export_service()._display_places == 2
        assert orchestrator.create_replay_verifier()._store is store
        assert orchestrator.store is store
        assert orchestrator.clock is clock


class TestWorkflow:
    def test_execute_lock_replay(self, seeded_store, test_config, clock):
        orchestrator = RunOrchestrator(seeded_store, test_config, clock=clock)

        result = orchestrator.execute_run("RUN-1")
        assert result.success
        assert result.totals.total_payable == D("3116.5")
        assert all(r.actor_id == TEST_ACTOR_ID for r in result.results)

        orchestrator.create_lifecycle().approve("RUN-1", "approver")
        locked = orchestrator.lock_run("RUN-1")
        assert locked.status is RunStatus.LOCKED
        assert locked.locked_by == TEST_ACTOR_ID

        clock.advance(3600)
        report = orchestrator.replay_run("RUN-1")
        assert report.overall_status is ShapeStatus.MATCH
        assert report.recomputed_count == report.stored_count == 4
        assert report.replayed_at == clock.now()
        assert len(seeded_store.replays) == 1

    def test_exports_after_execution(self, seeded_store, test_config, clock):
        orchestrator = RunOrchestrator(seeded_store, test_config, clock=clock)
        orchestrator.execute_run("RUN-1")
        exports = orchestrator.create_export_service().export_all("RUN-1")
        assert {shape.value for shape in exports} == {"summary", "detail", "vat", "audit"}
        assert len(seeded_store.export_jobs) == 4
