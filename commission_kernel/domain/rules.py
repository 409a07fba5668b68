"""
Rules -- versioned, immutable commission rule definitions.

Responsibility:
    Defines the closed set of rule shapes (percentage, fixed, tiered, hybrid)
    as a tagged union of term variants, together with tiers, conditions and
    the canonical snapshot/checksum used to pin a rule version into runs.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - A rule's terms variant is the only source of ``rule_type``; each
      variant carries exactly the fields its type needs.
    - ``checksum`` is SHA-256 over the canonical snapshot (minus the checksum
      itself).  Any field change produces a different checksum.
    - Edits never mutate a version: ``revise()`` returns version + 1.

Failure modes:
    - RuleChecksumMismatchError from ``from_snapshot`` when the snapshot's
      recorded checksum does not match its content.
    - ValueError / KeyError for malformed snapshot documents.

Audit relevance:
    The snapshot dict is what gets embedded in audit export rows and pinned
    into a run at execution time; replay rebuilds rules from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Union

from commission_kernel.domain.values import DecimalValue
from commission_kernel.exceptions import RuleChecksumMismatchError
from commission_kernel.utils.hashing import hash_payload


class EntityType(str, Enum):
    """Role an entity plays on a distribution event."""

    DISTRIBUTOR = "distributor"
    REFERRER = "referrer"
    PARTNER = "partner"


class RuleType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    TIERED = "tiered"
    HYBRID = "hybrid"


class VatMode(str, Enum):
    """Whether VAT is inside the quoted commission, on top of it, or absent."""

    INCLUDED = "included"
    ADDED = "added"
    NOT_APPLICABLE = "not_applicable"


class CalculationBasis(str, Enum):
    """Which amount the rate or tier schedule is applied to."""

    DISTRIBUTION_AMOUNT = "distribution_amount"
    CUMULATIVE_AMOUNT = "cumulative_amount"
    MONTHLY_VOLUME = "monthly_volume"
    QUARTERLY_VOLUME = "quarterly_volume"
    ANNUAL_VOLUME = "annual_volume"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_EQUAL = "greater_equal"
    LESS_EQUAL = "less_equal"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "not_in"


@dataclass(frozen=True, slots=True)
class CommissionTier:
    """
    One bracket of a tiered schedule.

    The bracket covers ``[min_threshold, max_threshold)``; ``max_threshold``
    of None means unbounded above.
    """

    tier_order: int
    min_threshold: DecimalValue
    max_threshold: DecimalValue | None = None
    rate: DecimalValue | None = None
    fixed_amount: DecimalValue | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "min_threshold", DecimalValue.of(self.min_threshold))
        for name in ("max_threshold", "rate", "fixed_amount"):
            raw = getattr(self, name)
            if raw is not None:
                object.__setattr__(self, name, DecimalValue.of(raw))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier_order": self.tier_order,
            "min_threshold": _plain(self.min_threshold),
            "max_threshold": _plain(self.max_threshold),
            "rate": _plain(self.rate),
            "fixed_amount": _plain(self.fixed_amount),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CommissionTier:
        return cls(
            tier_order=int(data["tier_order"]),
            min_threshold=data["min_threshold"],
            max_threshold=data.get("max_threshold"),
            rate=data.get("rate"),
            fixed_amount=data.get("fixed_amount"),
        )


@dataclass(frozen=True, slots=True)
class RuleCondition:
    """
    A single predicate over a context field.

    Conditions sharing a ``condition_group`` are AND-ed (required ones only);
    groups are OR-ed.
    """

    field_name: str
    operator: ConditionOperator
    value: Any
    is_required: bool = True
    condition_group: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "operator", ConditionOperator(self.operator))
        if isinstance(self.value, list):
            object.__setattr__(self, "value", tuple(self.value))

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_name": self.field_name,
            "operator": self.operator.value,
            "value": _plain(self.value),
            "is_required": self.is_required,
            "condition_group": self.condition_group,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleCondition:
        return cls(
            field_name=data["field_name"],
            operator=ConditionOperator(data["operator"]),
            value=data.get("value"),
            is_required=bool(data.get("is_required", True)),
            condition_group=int(data.get("condition_group", 0)),
        )


# Rule terms: one variant per rule_type


@dataclass(frozen=True, slots=True)
class PercentageTerms:
    base_rate: DecimalValue

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_rate", DecimalValue.of(self.base_rate))

    @property
    def rule_type(self) -> RuleType:
        return RuleType.PERCENTAGE


@dataclass(frozen=True, slots=True)
class FixedTerms:
    fixed_amount: DecimalValue

    def __post_init__(self) -> None:
        object.__setattr__(self, "fixed_amount", DecimalValue.of(self.fixed_amount))

    @property
    def rule_type(self) -> RuleType:
        return RuleType.FIXED


@dataclass(frozen=True, slots=True)
class TieredTerms:
    tiers: tuple[CommissionTier, ...]

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.tiers, key=lambda t: t.tier_order))
        object.__setattr__(self, "tiers", ordered)

    @property
    def rule_type(self) -> RuleType:
        return RuleType.TIERED


@dataclass(frozen=True, slots=True)
class HybridTerms:
    fixed_amount: DecimalValue
    base_rate: DecimalValue

    def __post_init__(self) -> None:
        object.__setattr__(self, "fixed_amount", DecimalValue.of(self.fixed_amount))
        object.__setattr__(self, "base_rate", DecimalValue.of(self.base_rate))

    @property
    def rule_type(self) -> RuleType:
        return RuleType.HYBRID


RuleTerms = Union[PercentageTerms, FixedTerms, TieredTerms, HybridTerms]


@dataclass(frozen=True, slots=True)
class Rule:
    """
    A versioned commission rule.

    Contract:
        Identified by ``(id, version)``.  Once a version has been used by a
        run it is never changed; edits go through ``revise()``.

    Guarantees:
        - ``rule_type`` always agrees with ``terms``.
        - ``checksum`` is deterministic over the rule's content.
        - ``snapshot()`` -> ``from_snapshot()`` reproduces an equal rule.

    Non-goals:
        - Structural validation (date ordering, tier partitioning) lives in
          ``commission_kernel.domain.validation``; a Rule can be constructed
          in an invalid shape so that it can be reported, not crash loading.
    """

    id: str
    version: int
    entity_type: EntityType
    terms: RuleTerms
    entity_name: str | None = None
    min_amount: DecimalValue = field(default_factory=DecimalValue.zero)
    max_amount: DecimalValue | None = None
    vat_mode: VatMode = VatMode.NOT_APPLICABLE
    vat_jurisdiction: str | None = None
    calculation_basis: CalculationBasis = CalculationBasis.DISTRIBUTION_AMOUNT
    priority: int = 100
    effective_from: date | None = None
    effective_to: date | None = None
    is_active: bool = True
    conditions: tuple[RuleCondition, ...] = ()
    name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "entity_type", EntityType(self.entity_type))
        object.__setattr__(self, "vat_mode", VatMode(self.vat_mode))
        object.__setattr__(
            self, "calculation_basis", CalculationBasis(self.calculation_basis)
        )
        object.__setattr__(self, "min_amount", DecimalValue.of(self.min_amount))
        if self.max_amount is not None:
            object.__setattr__(self, "max_amount", DecimalValue.of(self.max_amount))
        object.__setattr__(self, "conditions", tuple(self.conditions))

    @property
    def rule_type(self) -> RuleType:
        return self.terms.rule_type

    @property
    def key(self) -> tuple[str, int]:
        return (self.id, self.version)

    @property
    def checksum(self) -> str:
        return hash_payload(self._content())

    def is_effective_on(self, on_date: date) -> bool:
        if self.effective_from is not None and on_date < self.effective_from:
            return False
        if self.effective_to is not None and on_date > self.effective_to:
            return False
        return True

    def revise(self, **changes: Any) -> Rule:
        """Return the next version of this rule with ``changes`` applied."""
        changes.pop("version", None)
        changes.pop("id", None)
        return replace(self, version=self.version + 1, **changes)

    # Snapshot

    def _content(self) -> dict[str, Any]:
        terms = self.terms
        base_rate = getattr(terms, "base_rate", None)
        fixed_amount = getattr(terms, "fixed_amount", None)
        tiers = [t.to_dict() for t in terms.tiers] if isinstance(terms, TieredTerms) else []
        return {
            "id": self.id,
            "version": self.version,
            "name": self.name,
            "entity_type": self.entity_type.value,
            "entity_name": self.entity_name,
            "rule_type": self.rule_type.value,
            "base_rate": _plain(base_rate),
            "fixed_amount": _plain(fixed_amount),
            "tiers": tiers,
            "min_amount": _plain(self.min_amount),
            "max_amount": _plain(self.max_amount),
            "vat_mode": self.vat_mode.value,
            "vat_jurisdiction": self.vat_jurisdiction,
            "calculation_basis": self.calculation_basis.value,
            "priority": self.priority,
            "effective_from": _plain(self.effective_from),
            "effective_to": _plain(self.effective_to),
            "is_active": self.is_active,
            "conditions": [c.to_dict() for c in self.conditions],
        }

    def snapshot(self) -> dict[str, Any]:
        """Frozen, JSON-safe content of this version including its checksum."""
        content = self._content()
        content["checksum"] = hash_payload(content)
        return content

    @classmethod
    def from_snapshot(cls, data: dict[str, Any], *, verify: bool = True) -> Rule:
        """
        Rebuild a rule from ``snapshot()`` output.

        Raises:
            RuleChecksumMismatchError: If ``verify`` and the embedded
                checksum does not match the rebuilt rule.
        """
        rule_type = RuleType(data["rule_type"])
        terms: RuleTerms
        if rule_type is RuleType.PERCENTAGE:
            terms = PercentageTerms(base_rate=data["base_rate"])
        elif rule_type is RuleType.FIXED:
            terms = FixedTerms(fixed_amount=data["fixed_amount"])
        elif rule_type is RuleType.TIERED:
            terms = TieredTerms(
                tiers=tuple(CommissionTier.from_dict(t) for t in data.get("tiers", []))
            )
        else:
            terms = HybridTerms(
                fixed_amount=data["fixed_amount"], base_rate=data["base_rate"]
            )

        rule = cls(
            id=str(data["id"]),
            version=int(data["version"]),
            name=data.get("name"),
            entity_type=EntityType(data["entity_type"]),
            entity_name=data.get("entity_name"),
            terms=terms,
            min_amount=data.get("min_amount") or "0",
            max_amount=data.get("max_amount"),
            vat_mode=VatMode(data.get("vat_mode", VatMode.NOT_APPLICABLE.value)),
            vat_jurisdiction=data.get("vat_jurisdiction"),
            calculation_basis=CalculationBasis(
                data.get("calculation_basis", CalculationBasis.DISTRIBUTION_AMOUNT.value)
            ),
            priority=int(data.get("priority", 100)),
            effective_from=_parse_date(data.get("effective_from")),
            effective_to=_parse_date(data.get("effective_to")),
            is_active=bool(data.get("is_active", True)),
            conditions=tuple(
                RuleCondition.from_dict(c) for c in data.get("conditions", [])
            ),
        )

        expected = data.get("checksum")
        if verify and expected is not None and expected != rule.checksum:
            raise RuleChecksumMismatchError(rule.id, expected, rule.checksum)
        return rule


def _plain(value: Any) -> Any:
    """Render a domain value into its JSON-safe canonical form."""
    if value is None:
        return None
    if isinstance(value, DecimalValue):
        return str(value)
    if isinstance(value, Decimal):
        return str(DecimalValue.of(value))
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def _parse_date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value))
