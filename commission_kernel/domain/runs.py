"""
Calculation runs -- status state machine, totals and execution history.

Responsibility:
    ``CalculationRun`` is the unit of computation, approval and replay.
    ``RunStatus`` transitions are validated here; services only ask for a
    transition and persist the returned instance.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - DRAFT -> IN_PROGRESS -> AWAITING_APPROVAL -> APPROVED -> LOCKED.
    - AWAITING_APPROVAL may be rejected back to IN_PROGRESS.
    - Any state before APPROVED may move to CANCELLED (terminal).
    - Only DRAFT / IN_PROGRESS runs are recomputable.
    - LOCKED and CANCELLED have no outgoing transitions.

Failure modes:
    - InvalidRunTransitionError for any transition not in the table.
    - RunLockedError when a LOCKED run is asked to change.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any

from commission_kernel.domain.results import CalculationResult
from commission_kernel.domain.rules import EntityType
from commission_kernel.domain.values import DecimalValue
from commission_kernel.exceptions import InvalidRunTransitionError, RunLockedError


class RunStatus(str, Enum):
    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    APPROVED = "APPROVED"
    LOCKED = "LOCKED"
    CANCELLED = "CANCELLED"


RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.DRAFT: frozenset({RunStatus.IN_PROGRESS, RunStatus.CANCELLED}),
    RunStatus.IN_PROGRESS: frozenset(
        {RunStatus.IN_PROGRESS, RunStatus.AWAITING_APPROVAL, RunStatus.CANCELLED}
    ),
    RunStatus.AWAITING_APPROVAL: frozenset(
        {RunStatus.APPROVED, RunStatus.IN_PROGRESS, RunStatus.CANCELLED}
    ),
    RunStatus.APPROVED: frozenset({RunStatus.LOCKED}),
    RunStatus.LOCKED: frozenset(),
    RunStatus.CANCELLED: frozenset(),
}

RECOMPUTABLE_STATUSES = frozenset({RunStatus.DRAFT, RunStatus.IN_PROGRESS})


@dataclass(frozen=True, slots=True)
class RunTotals:
    """Order-independent aggregates over a run's results."""

    total_gross: DecimalValue = field(default_factory=DecimalValue.zero)
    total_vat: DecimalValue = field(default_factory=DecimalValue.zero)
    total_net: DecimalValue = field(default_factory=DecimalValue.zero)
    total_credits_applied: DecimalValue = field(default_factory=DecimalValue.zero)
    total_payable: DecimalValue = field(default_factory=DecimalValue.zero)
    result_count: int = 0

    @classmethod
    def from_results(cls, results: list[CalculationResult]) -> RunTotals:
        return cls(
            total_gross=DecimalValue.sum(r.gross_commission for r in results),
            total_vat=DecimalValue.sum(r.vat_amount for r in results),
            total_net=DecimalValue.sum(r.net_commission for r in results),
            total_credits_applied=DecimalValue.sum(r.credits_applied for r in results),
            total_payable=DecimalValue.sum(r.total_payable for r in results),
            result_count=len(results),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_gross": str(self.total_gross),
            "total_vat": str(self.total_vat),
            "total_net": str(self.total_net),
            "total_credits_applied": str(self.total_credits_applied),
            "total_payable": str(self.total_payable),
            "result_count": self.result_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunTotals:
        return cls(
            total_gross=DecimalValue.of(data.get("total_gross", "0")),
            total_vat=DecimalValue.of(data.get("total_vat", "0")),
            total_net=DecimalValue.of(data.get("total_net", "0")),
            total_credits_applied=DecimalValue.of(data.get("total_credits_applied", "0")),
            total_payable=DecimalValue.of(data.get("total_payable", "0")),
            result_count=int(data.get("result_count", 0)),
        )


@dataclass(frozen=True, slots=True)
class CalculationRun:
    """
    A commission calculation run.

    Contract:
        Instances are immutable; ``transition_to`` returns an updated copy.
    """

    id: str
    name: str
    status: RunStatus = RunStatus.DRAFT
    period_start: date | None = None
    period_end: date | None = None
    totals: RunTotals = field(default_factory=RunTotals)
    created_by: str | None = None
    approved_by: str | None = None
    locked_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    locked_at: datetime | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", RunStatus(self.status))

    @property
    def is_recomputable(self) -> bool:
        return self.status in RECOMPUTABLE_STATUSES

    def can_transition_to(self, target: RunStatus) -> bool:
        return RunStatus(target) in RUN_TRANSITIONS[self.status]

    def transition_to(self, target: RunStatus, at: datetime, **changes: Any) -> CalculationRun:
        """
        Move to ``target``.

        Raises:
            RunLockedError: The run is LOCKED.
            InvalidRunTransitionError: The transition is not allowed.
        """
        target = RunStatus(target)
        if self.status is RunStatus.LOCKED:
            raise RunLockedError(self.id)
        if not self.can_transition_to(target):
            raise InvalidRunTransitionError(self.id, self.status.value, target.value)
        return replace(self, status=target, updated_at=at, **changes)


class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ExecutionHistoryEntry:
    """One rule x event x role evaluation, as written to the history sink."""

    run_id: str
    rule_id: str
    rule_version: int
    event_id: str
    entity_type: EntityType
    entity_name: str
    status: ExecutionStatus
    duration_ms: float
    recorded_at: datetime
    skip_reason: str | None = None
    error_message: str | None = None
    conditions_evaluated: tuple[dict[str, Any], ...] = ()
