"""
commission_batch.domain.types -- Pure frozen dataclasses for run execution.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from commission_kernel.domain.results import CalculationResult
from commission_kernel.domain.runs import RunStatus, RunTotals


class ItemStatus(str, Enum):
    """Outcome class of one item reported by a run."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"  # No rule applied to the event x role
    FAILED = "failed"  # A rule x event pairing could not be calculated
    WARNING = "warning"  # Structural rule issue, run continues


@dataclass(frozen=True)
class ItemOutcome:
    """One error, warning or skip collected during a run.

    ``item_key`` identifies what the outcome is about: ``event_id:role`` for
    per-item outcomes, ``rule_id@version`` for rule validation, or the run
    id for run-level failures.
    """

    status: ItemStatus
    item_key: str
    code: str | None = None
    message: str | None = None
    event_id: str | None = None
    entity_type: str | None = None
    rule_id: str | None = None
    rule_version: int | None = None

    @classmethod
    def failed(cls, code: str, message: str, item_key: str = "", **context: Any) -> ItemOutcome:
        return cls(ItemStatus.FAILED, item_key, code, message, **context)

    @classmethod
    def warning(cls, code: str, message: str, item_key: str = "", **context: Any) -> ItemOutcome:
        return cls(ItemStatus.WARNING, item_key, code, message, **context)

    @classmethod
    def skipped(cls, code: str, message: str, item_key: str = "", **context: Any) -> ItemOutcome:
        return cls(ItemStatus.SKIPPED, item_key, code, message, **context)


@dataclass(frozen=True)
class RunExecutionResult:
    """Immutable result of ``execute_run``.

    ``success`` means no run-level fatal error.  A successful run may still
    carry per-item ``errors``, structural ``warnings`` and ``skipped`` roles.
    """

    run_id: str
    success: bool
    status: RunStatus
    results: tuple[CalculationResult, ...] = ()
    errors: tuple[ItemOutcome, ...] = ()
    warnings: tuple[ItemOutcome, ...] = ()
    skipped: tuple[ItemOutcome, ...] = ()
    totals: RunTotals | None = None
    execution_time_ms: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def execution_time(self) -> float:
        """Wall-clock execution time in seconds."""
        return self.execution_time_ms / 1000
