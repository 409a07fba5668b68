"""
RunOrchestrator -- DI container for run execution, lifecycle, export and replay.

Contract:
    Wires one ``CommissionStore``, one ``Clock`` and one configuration into
    the executor, lifecycle service, export service and replay verifier.
    Single place where run dependencies are composed.

Architecture: commission_batch (top-level).  The canonical entry point for
    executing and locking runs.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Configuration flows in from ``commission_config.get_active_config()``;
      nothing below this module reads configuration.
"""

from __future__ import annotations

from commission_config import get_active_config
from commission_config.schema import CommissionConfig
from commission_kernel.domain.clock import Clock, SystemClock
from commission_kernel.domain.runs import CalculationRun
from commission_kernel.logging_config import get_logger
from commission_kernel.services.store import CommissionStore
from commission_engines.credits import LedgerCreditApplier
from commission_engines.evaluator import RuleEvaluator
from commission_reporting.export_service import ExportService
from commission_reporting.replay import ReplayReport, ReplayVerifier

from commission_batch.domain.types import RunExecutionResult
from commission_batch.services.executor import RunExecutor
from commission_batch.services.lifecycle import RunLifecycleService

logger = get_logger("batch.orchestrator")


class RunOrchestrator:
    """DI container for the run workflow.

    Contract:
        - ``from_config()`` builds a fully wired orchestrator.
        - ``execute_run()`` / ``lock_run()`` / ``replay_run()`` delegate to
          the wired services.

    Non-goals:
        - Does NOT manage session lifecycle -- caller controls commits.
    """

    def __init__(
        self,
        store: CommissionStore,
        config: CommissionConfig,
        clock: Clock | None = None,
        actor_id: str | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or config.settings.default_actor_id
        self._evaluator = RuleEvaluator()
        # One applier per orchestrator so per-key credit locks are shared
        self._credit_applier = LedgerCreditApplier(store)

    @classmethod
    def from_config(
        cls,
        store: CommissionStore,
        config: CommissionConfig | None = None,
        clock: Clock | None = None,
        actor_id: str | None = None,
    ) -> RunOrchestrator:
        """Create an orchestrator; loads the bundled config when none is given."""
        return cls(
            store=store,
            config=config or get_active_config(),
            clock=clock,
            actor_id=actor_id,
        )

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    def create_executor(self) -> RunExecutor:
        settings = self._config.settings
        return RunExecutor(
            store=self._store,
            vat_table=self._config.vat_table,
            clock=self._clock,
            evaluator=self._evaluator,
            credit_applier=self._credit_applier,
            batch_size=settings.batch_size,
            max_workers=settings.max_workers,
            tier_validation=settings.tier_validation,
            actor_id=self._actor_id,
        )

    def create_lifecycle(self) -> RunLifecycleService:
        return RunLifecycleService(
            store=self._store,
            clock=self._clock,
            display_places=self._config.settings.display_places,
        )

    def create_export_service(self) -> ExportService:
        return ExportService(
            store=self._store,
            clock=self._clock,
            display_places=self._config.settings.display_places,
        )

    def create_replay_verifier(self) -> ReplayVerifier:
        return ReplayVerifier(
            store=self._store,
            clock=self._clock,
            display_places=self._config.settings.display_places,
            evaluator=self._evaluator,
        )

    # -------------------------------------------------------------------------
    # Workflow shortcuts
    # -------------------------------------------------------------------------

    def execute_run(self, run_id: str, actor_id: str | None = None) -> RunExecutionResult:
        return self.create_executor().execute_run(run_id, actor_id=actor_id or self._actor_id)

    def lock_run(self, run_id: str, actor_id: str | None = None) -> CalculationRun:
        return self.create_lifecycle().lock(run_id, actor_id or self._actor_id)

    def replay_run(self, run_id: str) -> ReplayReport:
        return self.create_replay_verifier().replay(run_id)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def store(self) -> CommissionStore:
        return self._store

    @property
    def config(self) -> CommissionConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock
