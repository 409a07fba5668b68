"""
ORM model for versioned commission rules.

Contract:
    One row per ``(rule_id, version)``.  The full rule content lives in the
    ``snapshot`` JSON column exactly as produced by ``Rule.snapshot()``; the
    scalar columns duplicate the fields the store filters and sorts on.

Invariants enforced:
    - ``(rule_id, version)`` is UNIQUE.
    - ``to_dto()`` verifies the snapshot checksum, so a row edited behind the
      engine's back fails loudly instead of calculating with altered terms.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from commission_kernel.db.base import TrackedBase

if TYPE_CHECKING:
    from commission_kernel.domain.rules import Rule


class RuleModel(TrackedBase):
    """Persistent rule version."""

    __tablename__ = "commission_rules"

    __table_args__ = (
        UniqueConstraint("rule_id", "version", name="uq_commission_rules_version"),
        Index("ix_commission_rules_active", "is_active", "entity_type"),
    )

    rule_id: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    def to_dto(self) -> Rule:
        from commission_kernel.domain.rules import Rule

        return Rule.from_snapshot(self.snapshot)

    @classmethod
    def from_dto(cls, dto: Rule, created_by_id: str = "system") -> RuleModel:
        snapshot = dto.snapshot()
        return cls(
            rule_id=dto.id,
            version=dto.version,
            checksum=snapshot["checksum"],
            name=dto.name,
            entity_type=dto.entity_type.value,
            rule_type=dto.rule_type.value,
            priority=dto.priority,
            is_active=dto.is_active,
            snapshot=snapshot,
            created_by_id=created_by_id,
            updated_by_id=None,
        )
