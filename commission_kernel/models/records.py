"""
ORM models for engine inputs: distribution events, credits, discounts.

Events are linked to runs through ``commission_run_events`` so that the same
event can be part of a DRAFT run and later of a corrected one.  Amounts are
DecimalString columns.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Date, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from commission_kernel.db.base import TrackedBase
from commission_kernel.db.types import DecimalString
from commission_kernel.domain.values import DecimalValue

if TYPE_CHECKING:
    from commission_kernel.domain.records import Credit, Discount, DistributionEvent


class DistributionEventModel(TrackedBase):
    __tablename__ = "commission_distribution_events"

    __table_args__ = (
        Index("ix_distribution_events_investor", "investor_name", "fund_name"),
    )

    event_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    investor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    fund_name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[DecimalValue] = mapped_column(DecimalString(), nullable=False)
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    distributor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    referrer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    partner_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    extra_fields: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def to_dto(self) -> DistributionEvent:
        from commission_kernel.domain.records import DistributionEvent

        return DistributionEvent(
            id=self.event_id,
            investor_name=self.investor_name,
            fund_name=self.fund_name,
            amount=self.amount,
            date=self.event_date,
            distributor_name=self.distributor_name,
            referrer_name=self.referrer_name,
            partner_name=self.partner_name,
            metadata=dict(self.extra_fields or {}),
        )

    @classmethod
    def from_dto(
        cls, dto: DistributionEvent, created_by_id: str = "system"
    ) -> DistributionEventModel:
        return cls(
            event_id=dto.id,
            investor_name=dto.investor_name,
            fund_name=dto.fund_name,
            amount=dto.amount,
            event_date=dto.date,
            distributor_name=dto.distributor_name,
            referrer_name=dto.referrer_name,
            partner_name=dto.partner_name,
            extra_fields=dict(dto.metadata) or None,
            created_by_id=created_by_id,
        )


class RunEventModel(TrackedBase):
    """Membership of a distribution event in a calculation run."""

    __tablename__ = "commission_run_events"

    __table_args__ = (
        UniqueConstraint("run_id", "event_id", name="uq_run_events"),
    )

    run_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    event_id: Mapped[str] = mapped_column(String(100), nullable=False)


class CreditModel(TrackedBase):
    __tablename__ = "commission_credits"

    __table_args__ = (
        Index("ix_credits_investor", "investor_name", "fund_name"),
    )

    credit_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    investor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    fund_name: Mapped[str] = mapped_column(String(200), nullable=False)
    remaining_balance: Mapped[DecimalValue] = mapped_column(
        DecimalString(), nullable=False
    )
    date_posted: Mapped[date] = mapped_column(Date, nullable=False)

    def to_dto(self) -> Credit:
        from commission_kernel.domain.records import Credit

        return Credit(
            id=self.credit_id,
            investor_name=self.investor_name,
            fund_name=self.fund_name,
            remaining_balance=self.remaining_balance,
            date_posted=self.date_posted,
        )

    @classmethod
    def from_dto(cls, dto: Credit, created_by_id: str = "system") -> CreditModel:
        return cls(
            credit_id=dto.id,
            investor_name=dto.investor_name,
            fund_name=dto.fund_name,
            remaining_balance=dto.remaining_balance,
            date_posted=dto.date_posted,
            created_by_id=created_by_id,
        )


class DiscountModel(TrackedBase):
    __tablename__ = "commission_discounts"

    __table_args__ = (
        Index("ix_discounts_investor", "investor_name", "fund_name"),
    )

    discount_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    investor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    fund_name: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    percentage: Mapped[DecimalValue | None] = mapped_column(DecimalString(), nullable=True)
    amount: Mapped[DecimalValue | None] = mapped_column(DecimalString(), nullable=True)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    def to_dto(self) -> Discount:
        from commission_kernel.domain.records import Discount, DiscountKind

        return Discount(
            id=self.discount_id,
            investor_name=self.investor_name,
            fund_name=self.fund_name,
            kind=DiscountKind(self.kind),
            percentage=self.percentage,
            amount=self.amount,
            effective_date=self.effective_date,
            expiry_date=self.expiry_date,
        )

    @classmethod
    def from_dto(cls, dto: Discount, created_by_id: str = "system") -> DiscountModel:
        return cls(
            discount_id=dto.id,
            investor_name=dto.investor_name,
            fund_name=dto.fund_name,
            kind=dto.kind.value,
            percentage=dto.percentage,
            amount=dto.amount,
            effective_date=dto.effective_date,
            expiry_date=dto.expiry_date,
            created_by_id=created_by_id,
        )
