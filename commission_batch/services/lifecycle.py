"""
RunLifecycleService -- approval workflow and locking for calculation runs.

Contract:
    Moves a run through AWAITING_APPROVAL -> APPROVED -> LOCKED (or back to
    IN_PROGRESS on rejection, or to CANCELLED before approval).  Every
    transition is validated by ``CalculationRun.transition_to`` and logged.

Invariants enforced:
    - Transition table of ``commission_kernel.domain.runs.RUN_TRANSITIONS``.
    - ``lock()`` renders the four export shapes from the stored results and
      pinned rule snapshots and stores their checksums; these are what a
      later replay is compared against.
    - A LOCKED run is never modified (``RunLockedError``).
"""

from __future__ import annotations

from commission_kernel.domain.clock import Clock, SystemClock
from commission_kernel.domain.runs import CalculationRun, RunStatus
from commission_kernel.exceptions import PinnedInputsMissingError
from commission_kernel.logging_config import LogContext, get_logger
from commission_kernel.services.store import CommissionStore, ShapeChecksum
from commission_reporting.shapes import render_all, snapshot_index

logger = get_logger("batch.lifecycle")


class RunLifecycleService:
    """Approval and locking of runs.

    Non-goals:
        - Does NOT check roles or permissions; ``actor_id`` is recorded, not
          authorized.
    """

    def __init__(
        self,
        store: CommissionStore,
        clock: Clock | None = None,
        display_places: int = 2,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._display_places = display_places

    def submit_for_approval(self, run_id: str, actor_id: str) -> CalculationRun:
        return self._transition(run_id, RunStatus.AWAITING_APPROVAL, actor_id)

    def approve(self, run_id: str, actor_id: str) -> CalculationRun:
        return self._transition(run_id, RunStatus.APPROVED, actor_id, approved_by=actor_id)

    def reject(self, run_id: str, actor_id: str, reason: str | None = None) -> CalculationRun:
        """Send an AWAITING_APPROVAL run back to IN_PROGRESS for recomputation."""
        return self._transition(run_id, RunStatus.IN_PROGRESS, actor_id, notes=reason)

    def cancel(self, run_id: str, actor_id: str, reason: str | None = None) -> CalculationRun:
        return self._transition(run_id, RunStatus.CANCELLED, actor_id, notes=reason)

    def lock(self, run_id: str, actor_id: str) -> CalculationRun:
        """
        Lock an APPROVED run and store its export checksums.

        The LOCKED run and its checksums are written together through
        ``save_lock``; if either write fails neither is kept.

        Raises:
            InvalidRunTransitionError: The run is not APPROVED.
            RunLockedError: The run is already LOCKED.
            PinnedInputsMissingError: The run was never executed.
            PersistenceError: The lock write failed; the run stays APPROVED.
        """
        run = self._store.get_run(run_id)
        now = self._clock.now()
        locked = run.transition_to(RunStatus.LOCKED, now, locked_by=actor_id, locked_at=now)

        pinned = self._store.get_pinned_inputs(run_id)
        if pinned is None:
            raise PinnedInputsMissingError(run_id)
        results = self._store.list_results(run_id)
        shapes = render_all(
            results, snapshot_index(pinned.rule_snapshots), self._display_places
        )
        checksums = [
            ShapeChecksum(shape=shape.value, checksum=rows.checksum, row_count=rows.row_count)
            for shape, rows in shapes.items()
        ]
        self._store.save_lock(locked, checksums)

        with LogContext.bind(run_id=run_id, actor_id=actor_id):
            logger.info(
                "run_locked",
                extra={
                    "run_id": run_id,
                    "locked_by": actor_id,
                    "result_count": len(results),
                    "checksums": {c.shape: c.checksum for c in checksums},
                },
            )
        return locked

    def _transition(
        self, run_id: str, target: RunStatus, actor_id: str, **changes: object
    ) -> CalculationRun:
        run = self._store.get_run(run_id)
        updated = run.transition_to(target, self._clock.now(), **changes)
        self._store.save_run(updated)
        with LogContext.bind(run_id=run_id, actor_id=actor_id):
            logger.info(
                "run_status_changed",
                extra={
                    "run_id": run_id,
                    "from_status": run.status.value,
                    "to_status": updated.status.value,
                    "actor_id": actor_id,
                },
            )
        return updated
