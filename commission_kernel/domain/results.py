"""
Calculation results and their audit trace.

Responsibility:
    ``CalculationResult`` is the persisted outcome of one rule applied to one
    (event, role) pair.  ``TraceStep`` records each pipeline step (discount,
    rate/tier, caps, VAT split, credit netting) with its inputs, outputs and
    formula; the trace is part of the audit contract.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.

Invariants enforced:
    - All amounts are DecimalValue.
    - ``checksum`` covers every field except the checksum itself, so any
      post-hoc change to a stored result is detectable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from commission_kernel.domain.records import CreditApplication
from commission_kernel.domain.rules import EntityType, VatMode
from commission_kernel.domain.values import DecimalValue
from commission_kernel.utils.hashing import hash_payload


@dataclass(frozen=True, slots=True)
class TraceStep:
    """One step of the calculation pipeline."""

    step_type: str
    inputs: dict[str, Any]
    outputs: dict[str, Any]
    formula: str = ""
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_type": self.step_type,
            "inputs": _stringify(self.inputs),
            "outputs": _stringify(self.outputs),
            "formula": self.formula,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TraceStep:
        return cls(
            step_type=data["step_type"],
            inputs=dict(data.get("inputs", {})),
            outputs=dict(data.get("outputs", {})),
            formula=data.get("formula", ""),
            notes=data.get("notes", ""),
        )


@dataclass(frozen=True, slots=True)
class CalculationResult:
    """
    Outcome of one rule x event x role calculation.

    Contract:
        Owned by exactly one run.  Immutable once that run is LOCKED.

    Guarantees:
        - ``net_commission + vat_amount`` equals the VAT-inclusive figure
          (``gross`` in included mode, ``gross + vat`` in added mode).
        - ``total_payable = net_commission + vat_amount - credits_applied``.
    """

    calculation_id: str
    run_id: str
    event_id: str
    rule_id: str
    rule_version: int
    rule_checksum: str
    entity_type: EntityType
    entity_name: str
    base_amount: DecimalValue
    applied_rate: DecimalValue
    gross_commission: DecimalValue
    vat_mode: VatMode
    vat_rate: DecimalValue
    vat_amount: DecimalValue
    net_commission: DecimalValue
    total_payable: DecimalValue
    calculated_at: datetime
    tier_applied: int | None = None
    discount_amount: DecimalValue = field(default_factory=DecimalValue.zero)
    credits_applied: DecimalValue = field(default_factory=DecimalValue.zero)
    credit_applications: tuple[CreditApplication, ...] = ()
    trace: tuple[TraceStep, ...] = ()
    actor_id: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def checksum(self) -> str:
        return hash_payload(self.to_dict(include_checksum=False))

    @property
    def amount_due(self) -> DecimalValue:
        """VAT-inclusive payable before credits."""
        return self.net_commission + self.vat_amount

    def to_dict(self, include_checksum: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "calculation_id": self.calculation_id,
            "run_id": self.run_id,
            "event_id": self.event_id,
            "rule_id": self.rule_id,
            "rule_version": self.rule_version,
            "rule_checksum": self.rule_checksum,
            "entity_type": self.entity_type.value,
            "entity_name": self.entity_name,
            "base_amount": str(self.base_amount),
            "applied_rate": str(self.applied_rate),
            "tier_applied": self.tier_applied,
            "gross_commission": str(self.gross_commission),
            "vat_mode": self.vat_mode.value,
            "vat_rate": str(self.vat_rate),
            "vat_amount": str(self.vat_amount),
            "net_commission": str(self.net_commission),
            "discount_amount": str(self.discount_amount),
            "credits_applied": str(self.credits_applied),
            "credit_applications": [c.to_dict() for c in self.credit_applications],
            "total_payable": str(self.total_payable),
            "trace": [s.to_dict() for s in self.trace],
            "calculated_at": self.calculated_at.isoformat(),
            "actor_id": self.actor_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
        if include_checksum:
            data["checksum"] = hash_payload(data)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalculationResult:
        return cls(
            calculation_id=data["calculation_id"],
            run_id=data["run_id"],
            event_id=data["event_id"],
            rule_id=data["rule_id"],
            rule_version=int(data["rule_version"]),
            rule_checksum=data["rule_checksum"],
            entity_type=EntityType(data["entity_type"]),
            entity_name=data["entity_name"],
            base_amount=DecimalValue.of(data["base_amount"]),
            applied_rate=DecimalValue.of(data["applied_rate"]),
            tier_applied=data.get("tier_applied"),
            gross_commission=DecimalValue.of(data["gross_commission"]),
            vat_mode=VatMode(data["vat_mode"]),
            vat_rate=DecimalValue.of(data["vat_rate"]),
            vat_amount=DecimalValue.of(data["vat_amount"]),
            net_commission=DecimalValue.of(data["net_commission"]),
            discount_amount=DecimalValue.of(data.get("discount_amount", "0")),
            credits_applied=DecimalValue.of(data.get("credits_applied", "0")),
            credit_applications=tuple(
                CreditApplication.from_dict(c)
                for c in data.get("credit_applications", [])
            ),
            total_payable=DecimalValue.of(data["total_payable"]),
            trace=tuple(TraceStep.from_dict(s) for s in data.get("trace", [])),
            calculated_at=datetime.fromisoformat(data["calculated_at"]),
            actor_id=data.get("actor_id"),
            started_at=_opt_datetime(data.get("started_at")),
            finished_at=_opt_datetime(data.get("finished_at")),
        )


def _opt_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _stringify(payload: dict[str, Any]) -> dict[str, Any]:
    """Render DecimalValue entries as strings so traces are JSON-safe."""
    out: dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, DecimalValue):
            out[key] = str(value)
        elif isinstance(value, dict):
            out[key] = _stringify(value)
        elif isinstance(value, (list, tuple)):
            out[key] = [
                _stringify(v) if isinstance(v, dict)
                else str(v) if isinstance(v, DecimalValue) else v
                for v in value
            ]
        else:
            out[key] = value
    return out
