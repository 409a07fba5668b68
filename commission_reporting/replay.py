"""
Replay verifier -- recompute a LOCKED run from its pinned inputs and compare.

Responsibility:
    Rebuilds every rule version from the snapshots pinned into the run,
    re-reads the original events by id, prices them again through the same
    ``EventPricer`` path the run used, renders the four export shapes and
    compares each checksum byte-for-byte against the one stored at lock
    time.

Architecture position:
    Reporting -- read-only with respect to the run.  The only write is the
    replay audit record.

Invariants enforced:
    - Only LOCKED runs are replayed (``RunNotLockedError`` otherwise).
    - Replay never touches credit balances; credits are not part of any
      export shape.
    - Timestamps and actor are taken from the stored result with the same
      ``calculation_id``; they are facts of the original run, not inputs to
      the calculation.
    - Every mismatch is reported per shape.  A rule snapshot whose checksum
      no longer matches its content, a rule version whose stored content
      drifted from its snapshot, or a missing source event are reported as
      integrity issues and force an overall MISMATCH.

Failure modes:
    - ``RunNotFoundError`` / ``RunNotLockedError`` / ``PinnedInputsMissingError``
      are raised; everything else is reported in the ``ReplayReport``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from commission_kernel.domain.clock import Clock, SystemClock
from commission_kernel.domain.results import CalculationResult
from commission_kernel.domain.rules import Rule
from commission_kernel.domain.runs import RunStatus
from commission_kernel.exceptions import (
    PinnedInputsMissingError,
    RuleChecksumMismatchError,
    RuleNotFoundError,
    RunNotLockedError,
)
from commission_kernel.logging_config import LogContext, get_logger
from commission_kernel.services.store import CommissionStore, PinnedInputs, ReplayRecord
from commission_engines.evaluator import RuleEvaluator
from commission_engines.pricing import EventPricer, build_result, calculation_id, price_all
from commission_reporting.shapes import ExportShape, render_all, snapshot_index

logger = get_logger("reporting.replay")


class ShapeStatus(str, Enum):
    MATCH = "MATCH"
    MISMATCH = "MISMATCH"


@dataclass(frozen=True)
class ShapeVerification:
    shape: ExportShape
    status: ShapeStatus
    stored_checksum: str | None
    recomputed_checksum: str
    row_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "shape": self.shape.value,
            "status": self.status.value,
            "stored_checksum": self.stored_checksum,
            "recomputed_checksum": self.recomputed_checksum,
            "row_count": self.row_count,
        }


@dataclass(frozen=True)
class ReplayReport:
    run_id: str
    overall_status: ShapeStatus
    shapes: tuple[ShapeVerification, ...]
    integrity_issues: tuple[str, ...]
    recomputed_count: int
    stored_count: int
    replayed_at: datetime

    @property
    def is_match(self) -> bool:
        return self.overall_status is ShapeStatus.MATCH

    def status_of(self, shape: ExportShape | str) -> ShapeStatus:
        wanted = ExportShape(shape)
        return next(s.status for s in self.shapes if s.shape is wanted)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "overall_status": self.overall_status.value,
            "shapes": [s.to_dict() for s in self.shapes],
            "integrity_issues": list(self.integrity_issues),
            "recomputed_count": self.recomputed_count,
            "stored_count": self.stored_count,
            "replayed_at": self.replayed_at.isoformat(),
        }


class ReplayVerifier:
    """
    Verifies that a locked run is reproducible from its pinned inputs.

    Contract:
        ``replay()`` always persists a replay record and returns the report,
        whether the outcome is MATCH or MISMATCH.
    """

    def __init__(
        self,
        store: CommissionStore,
        clock: Clock | None = None,
        display_places: int = 2,
        evaluator: RuleEvaluator | None = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._display_places = display_places
        self._evaluator = evaluator or RuleEvaluator()

    def replay(self, run_id: str) -> ReplayReport:
        run = self._store.get_run(run_id)
        if run.status is not RunStatus.LOCKED:
            raise RunNotLockedError(run_id, run.status.value)
        pinned = self._store.get_pinned_inputs(run_id)
        if pinned is None:
            raise PinnedInputsMissingError(run_id)

        with LogContext.bind(run_id=run_id):
            logger.info(
                "replay_started",
                extra={
                    "run_id": run_id,
                    "rule_count": len(pinned.rule_snapshots),
                    "event_count": len(pinned.event_ids),
                },
            )
            issues: list[str] = []
            stored = self._store.list_results(run_id)
            recomputed = self.recompute(pinned, stored, issues)

            shapes = render_all(
                recomputed, snapshot_index(pinned.rule_snapshots), self._display_places
            )
            stored_checksums = self._store.get_lock_checksums(run_id)
            verifications: list[ShapeVerification] = []
            for shape, rendered in shapes.items():
                stored_checksum = stored_checksums.get(shape.value)
                expected = stored_checksum.checksum if stored_checksum else None
                status = (
                    ShapeStatus.MATCH if expected == rendered.checksum else ShapeStatus.MISMATCH
                )
                if status is ShapeStatus.MISMATCH:
                    logger.warning(
                        "replay_shape_mismatch",
                        extra={
                            "run_id": run_id,
                            "shape": shape.value,
                            "stored_checksum": expected,
                            "recomputed_checksum": rendered.checksum,
                        },
                    )
                verifications.append(
                    ShapeVerification(
                        shape=shape,
                        status=status,
                        stored_checksum=expected,
                        recomputed_checksum=rendered.checksum,
                        row_count=rendered.row_count,
                    )
                )

            all_match = all(v.status is ShapeStatus.MATCH for v in verifications)
            report = ReplayReport(
                run_id=run_id,
                overall_status=(
                    ShapeStatus.MATCH if all_match and not issues else ShapeStatus.MISMATCH
                ),
                shapes=tuple(verifications),
                integrity_issues=tuple(issues),
                recomputed_count=len(recomputed),
                stored_count=len(stored),
                replayed_at=self._clock.now(),
            )
            self._store.record_replay(
                ReplayRecord(
                    run_id=run_id,
                    overall_status=report.overall_status.value,
                    report=report.to_dict(),
                    replayed_at=report.replayed_at,
                )
            )
            logger.info(
                "replay_completed",
                extra={
                    "run_id": run_id,
                    "overall_status": report.overall_status.value,
                    "integrity_issue_count": len(issues),
                },
            )
            return report

    def recompute(
        self,
        pinned: PinnedInputs,
        stored: list[CalculationResult],
        issues: list[str],
    ) -> list[CalculationResult]:
        """Price the pinned events again; append integrity problems to ``issues``."""
        rules = [self._restore_rule(snapshot, issues) for snapshot in pinned.rule_snapshots]

        events = self._store.get_events(pinned.event_ids)
        missing = set(pinned.event_ids) - {e.id for e in events}
        for event_id in sorted(missing):
            issues.append(f"source event {event_id} is missing")

        pricer = EventPricer(
            rules=rules,
            vat_table=pinned.vat_table,
            events=events,
            discounts=pinned.discounts,
            evaluator=self._evaluator,
        )
        by_id = {r.calculation_id: r for r in stored}
        results: list[CalculationResult] = []
        for priced in price_all(pricer, events):
            outcome = priced.selection.selected
            if outcome is None or outcome.calculation is None:
                continue
            original = by_id.get(calculation_id(pinned.run_id, priced.event.id, priced.entity_type))
            results.append(
                build_result(
                    run_id=pinned.run_id,
                    priced=priced,
                    computation=outcome.calculation,
                    rule=outcome.rule,
                    calculated_at=original.calculated_at if original else self._clock.now(),
                    actor_id=original.actor_id if original else None,
                    started_at=original.started_at if original else None,
                    finished_at=original.finished_at if original else None,
                )
            )
        return results

    def _restore_rule(self, snapshot: dict[str, Any], issues: list[str]) -> Rule:
        try:
            rule = Rule.from_snapshot(snapshot, verify=True)
        except RuleChecksumMismatchError as exc:
            issues.append(
                f"rule {exc.rule_id} v{snapshot.get('version')} snapshot checksum mismatch"
            )
            rule = Rule.from_snapshot(snapshot, verify=False)

        try:
            current = self._store.get_rule(rule.id, rule.version)
        except RuleNotFoundError:
            issues.append(f"rule {rule.id} v{rule.version} no longer exists in the rule store")
        else:
            if current.checksum != snapshot.get("checksum"):
                issues.append(f"rule {rule.id} v{rule.version} content drifted from its snapshot")
        return rule
