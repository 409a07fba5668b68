"""
Input records consumed by the engine: distribution events, credits, discounts.

These are read-only snapshots of rows owned by the persistence collaborator.
The engine never mutates them; credit balance changes are expressed as
``CreditApplication`` records and written back through the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from commission_kernel.domain.rules import EntityType
from commission_kernel.domain.values import DecimalValue


@dataclass(frozen=True, slots=True)
class DistributionEvent:
    """A capital-contribution event, with up to three commissionable roles."""

    id: str
    investor_name: str
    fund_name: str
    amount: DecimalValue
    date: date
    distributor_name: str | None = None
    referrer_name: str | None = None
    partner_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", DecimalValue.of(self.amount))

    @property
    def investor_key(self) -> tuple[str, str]:
        return (self.investor_name, self.fund_name)

    @property
    def sort_key(self) -> tuple[date, str]:
        return (self.date, self.id)

    def role_name(self, entity_type: EntityType) -> str | None:
        return getattr(self, f"{EntityType(entity_type).value}_name")

    def populated_roles(self) -> list[tuple[EntityType, str]]:
        """Roles with a non-empty entity name, in a fixed order."""
        roles = []
        for entity_type in EntityType:
            name = self.role_name(entity_type)
            if name:
                roles.append((entity_type, name))
        return roles

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "investor_name": self.investor_name,
            "fund_name": self.fund_name,
            "amount": str(self.amount),
            "date": self.date.isoformat(),
            "distributor_name": self.distributor_name,
            "referrer_name": self.referrer_name,
            "partner_name": self.partner_name,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, slots=True)
class Credit:
    """
    Outstanding balance owed to an investor, consumed FIFO.

    ``remaining_balance`` only ever decreases and never goes below zero.
    """

    id: str
    investor_name: str
    fund_name: str
    remaining_balance: DecimalValue
    date_posted: date

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "remaining_balance", DecimalValue.of(self.remaining_balance)
        )

    @property
    def is_exhausted(self) -> bool:
        return not self.remaining_balance.is_positive

    @property
    def fifo_key(self) -> tuple[date, str]:
        return (self.date_posted, self.id)


@dataclass(frozen=True, slots=True)
class CreditApplication:
    """One credit consumed against one payable."""

    credit_id: str
    amount_applied: DecimalValue
    remaining_balance: DecimalValue

    def to_dict(self) -> dict[str, str]:
        return {
            "credit_id": self.credit_id,
            "amount_applied": str(self.amount_applied),
            "remaining_balance": str(self.remaining_balance),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CreditApplication:
        return cls(
            credit_id=data["credit_id"],
            amount_applied=DecimalValue.of(data["amount_applied"]),
            remaining_balance=DecimalValue.of(data["remaining_balance"]),
        )


class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


@dataclass(frozen=True, slots=True)
class Discount:
    """
    Reduction of the commission base for an investor/fund.

    ``percentage`` is a fraction (0.1 = 10%).  Applied before any rate.
    """

    id: str
    investor_name: str
    fund_name: str
    kind: DiscountKind
    effective_date: date
    percentage: DecimalValue | None = None
    amount: DecimalValue | None = None
    expiry_date: date | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", DiscountKind(self.kind))
        if self.percentage is not None:
            object.__setattr__(self, "percentage", DecimalValue.of(self.percentage))
        if self.amount is not None:
            object.__setattr__(self, "amount", DecimalValue.of(self.amount))
        if self.kind is DiscountKind.PERCENTAGE and self.percentage is None:
            raise ValueError(f"Discount {self.id}: percentage discount needs a percentage")
        if self.kind is DiscountKind.FIXED_AMOUNT and self.amount is None:
            raise ValueError(f"Discount {self.id}: fixed discount needs an amount")

    def is_active_on(self, on_date: date) -> bool:
        if on_date < self.effective_date:
            return False
        return self.expiry_date is None or on_date <= self.expiry_date

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "investor_name": self.investor_name,
            "fund_name": self.fund_name,
            "kind": self.kind.value,
            "percentage": str(self.percentage) if self.percentage is not None else None,
            "amount": str(self.amount) if self.amount is not None else None,
            "effective_date": self.effective_date.isoformat(),
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Discount:
        return cls(
            id=data["id"],
            investor_name=data["investor_name"],
            fund_name=data["fund_name"],
            kind=DiscountKind(data["kind"]),
            percentage=data.get("percentage"),
            amount=data.get("amount"),
            effective_date=date.fromisoformat(data["effective_date"]),
            expiry_date=(
                date.fromisoformat(data["expiry_date"]) if data.get("expiry_date") else None
            ),
        )
