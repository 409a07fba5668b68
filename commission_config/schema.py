"""
Commission configuration schema.

Frozen dataclasses the loader parses YAML into.  ``CommissionConfig`` is the
single runtime artifact returned by ``get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from commission_kernel.domain.rules import Rule
from commission_kernel.domain.validation import TierValidation
from commission_kernel.domain.vat import VatTable


@dataclass(frozen=True)
class EngineSettings:
    """Knobs for run execution and presentation."""

    batch_size: int = 10
    max_workers: int = 4
    display_places: int = 2
    tier_validation: TierValidation = TierValidation.STRICT
    default_actor_id: str = "system"

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.display_places < 0:
            raise ValueError(f"display_places must be >= 0, got {self.display_places}")


@dataclass(frozen=True)
class CommissionConfig:
    """Engine settings + VAT table + optional rule set, with a content checksum."""

    config_id: str
    version: int
    settings: EngineSettings
    vat_table: VatTable
    rules: tuple[Rule, ...] = field(default_factory=tuple)
    checksum: str = ""
