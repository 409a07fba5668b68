"""
Event pricing -- every populated role of an event through rule selection.

Responsibility:
    ``EventPricer`` holds the inputs of one run (rules, VAT table, event set,
    discounts) and, for one event, selects a rule for each populated role
    (distributor, referrer, partner) independently.  ``build_result`` turns
    a selected computation into a ``CalculationResult``.

    The run executor and the replay verifier both price through this
    module, so a replay walks exactly the path the original run walked.

Architecture position:
    Engines -- pure.  Credits, timestamps and persistence belong to the
    caller.

Invariants enforced:
    - ``calculation_id`` is a UUIDv5 of ``(run_id, event_id, entity_type)``:
      the same run recomputed yields the same ids.
    - Historical aggregates come from the pinned event set only.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from commission_kernel.domain.records import Discount, DistributionEvent
from commission_kernel.domain.results import CalculationResult
from commission_kernel.domain.rules import EntityType, Rule
from commission_kernel.domain.vat import VatTable
from commission_engines.aggregates import AggregateIndex
from commission_engines.calculator import CommissionComputation
from commission_engines.evaluator import EvaluationContext, RuleEvaluator, RuleSelection

CALCULATION_NAMESPACE = uuid.UUID("6f1c2a4e-8d3b-5e7f-9a0b-1c2d3e4f5a6b")


def calculation_id(run_id: str, event_id: str, entity_type: EntityType) -> str:
    return str(uuid.uuid5(CALCULATION_NAMESPACE, f"{run_id}:{event_id}:{entity_type.value}"))


@dataclass(frozen=True)
class PricedRole:
    """Rule selection for one event x role."""

    event: DistributionEvent
    entity_type: EntityType
    entity_name: str
    selection: RuleSelection

    @property
    def item_key(self) -> str:
        return f"{self.event.id}:{self.entity_type.value}"


class EventPricer:
    """
    Selects and calculates rules for events of one run.

    Contract:
        Rules are grouped by entity type once; ``price`` only offers a role
        the rules written for that role.
    """

    def __init__(
        self,
        rules: Iterable[Rule],
        vat_table: VatTable,
        events: Iterable[DistributionEvent],
        discounts: Iterable[Discount] = (),
        evaluator: RuleEvaluator | None = None,
    ):
        self._vat_table = vat_table
        self._evaluator = evaluator or RuleEvaluator()
        self._aggregates = AggregateIndex(events)
        self._rules_by_type: dict[EntityType, list[Rule]] = defaultdict(list)
        for rule in rules:
            self._rules_by_type[rule.entity_type].append(rule)
        self._discounts: dict[tuple[str, str], list[Discount]] = defaultdict(list)
        for discount in discounts:
            self._discounts[(discount.investor_name, discount.fund_name)].append(discount)

    def price(self, event: DistributionEvent) -> list[PricedRole]:
        priced: list[PricedRole] = []
        discounts = tuple(self._discounts.get(event.investor_key, ()))
        for entity_type, entity_name in event.populated_roles():
            context = EvaluationContext(
                event=event,
                entity_type=entity_type,
                entity_name=entity_name,
                vat_table=self._vat_table,
                aggregates=self._aggregates.for_event(event, entity_type),
                discounts=discounts,
            )
            selection = self._evaluator.select_rule(
                self._rules_by_type.get(entity_type, ()), context
            )
            priced.append(
                PricedRole(
                    event=event,
                    entity_type=entity_type,
                    entity_name=entity_name,
                    selection=selection,
                )
            )
        return priced


def build_result(
    *,
    run_id: str,
    priced: PricedRole,
    computation: CommissionComputation,
    rule: Rule,
    calculated_at: datetime,
    actor_id: str | None = None,
    started_at: datetime | None = None,
    finished_at: datetime | None = None,
) -> CalculationResult:
    return CalculationResult(
        calculation_id=calculation_id(run_id, priced.event.id, priced.entity_type),
        run_id=run_id,
        event_id=priced.event.id,
        rule_id=rule.id,
        rule_version=rule.version,
        rule_checksum=rule.checksum,
        entity_type=priced.entity_type,
        entity_name=priced.entity_name,
        base_amount=computation.base_amount,
        applied_rate=computation.applied_rate,
        tier_applied=computation.tier_applied,
        gross_commission=computation.gross_commission,
        vat_mode=computation.vat.mode,
        vat_rate=computation.vat.vat_rate,
        vat_amount=computation.vat_amount,
        net_commission=computation.net_commission,
        discount_amount=computation.discount_amount,
        credits_applied=computation.credits_applied,
        credit_applications=computation.credit_applications,
        total_payable=computation.total_payable,
        trace=computation.trace,
        calculated_at=calculated_at,
        actor_id=actor_id,
        started_at=started_at,
        finished_at=finished_at,
    )


def price_all(
    pricer: EventPricer, events: Sequence[DistributionEvent]
) -> list[PricedRole]:
    """Price every event in ``(date, id)`` order."""
    priced: list[PricedRole] = []
    for event in sorted(events, key=lambda e: e.sort_key):
        priced.extend(pricer.price(event))
    return priced
