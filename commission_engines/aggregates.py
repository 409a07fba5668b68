"""
Historical aggregates derived from a run's own event set.

The aggregates a rule may use as its calculation basis or in conditions are
computed from the events pinned into the run, never from live queries, so a
replay of the run sees exactly the same values.

Definitions (events ordered by ``(date, id)``; "up to" is inclusive):
    cumulative_amount  Sum of amounts for the same investor + fund up to
                       this event.
    deal_count         Number of such events.
    monthly_volume     Sum of amounts attributed to the same role entity
                       (e.g. distributor "Acme") in the same calendar month
                       up to this event.
    quarterly_volume   Same, calendar quarter.
    annual_volume      Same, calendar year.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from commission_kernel.domain.records import DistributionEvent
from commission_kernel.domain.rules import CalculationBasis, EntityType
from commission_kernel.domain.values import DecimalValue
from commission_kernel.exceptions import UnsupportedBasisError


@dataclass(frozen=True)
class HistoricalAggregates:
    cumulative_amount: DecimalValue = field(default_factory=DecimalValue.zero)
    monthly_volume: DecimalValue = field(default_factory=DecimalValue.zero)
    quarterly_volume: DecimalValue = field(default_factory=DecimalValue.zero)
    annual_volume: DecimalValue = field(default_factory=DecimalValue.zero)
    deal_count: int = 0

    def to_dict(self) -> dict[str, str | int]:
        return {
            "cumulative_amount": str(self.cumulative_amount),
            "monthly_volume": str(self.monthly_volume),
            "quarterly_volume": str(self.quarterly_volume),
            "annual_volume": str(self.annual_volume),
            "deal_count": self.deal_count,
        }


class AggregateIndex:
    """Precomputed running totals for every (event, role) in an event set."""

    def __init__(self, events: Iterable[DistributionEvent]):
        ordered = sorted(events, key=lambda e: e.sort_key)
        self._investor: dict[str, tuple[DecimalValue, int]] = {}
        self._volumes: dict[tuple[str, EntityType], tuple[DecimalValue, ...]] = {}

        investor_running: dict[tuple[str, str], tuple[DecimalValue, int]] = defaultdict(
            lambda: (DecimalValue.zero(), 0)
        )
        period_running: dict[tuple, DecimalValue] = defaultdict(DecimalValue.zero)

        for event in ordered:
            total, count = investor_running[event.investor_key]
            investor_running[event.investor_key] = (total + event.amount, count + 1)
            self._investor[event.id] = investor_running[event.investor_key]

            quarter = (event.date.month - 1) // 3 + 1
            for entity_type, name in event.populated_roles():
                volumes = []
                for period in (
                    ("M", event.date.year, event.date.month),
                    ("Q", event.date.year, quarter),
                    ("Y", event.date.year),
                ):
                    key = (entity_type, name, period)
                    period_running[key] = period_running[key] + event.amount
                    volumes.append(period_running[key])
                self._volumes[(event.id, entity_type)] = tuple(volumes)

    def for_event(
        self, event: DistributionEvent, entity_type: EntityType
    ) -> HistoricalAggregates:
        cumulative, count = self._investor.get(event.id, (event.amount, 1))
        volumes = self._volumes.get(
            (event.id, entity_type), (event.amount, event.amount, event.amount)
        )
        return HistoricalAggregates(
            cumulative_amount=cumulative,
            monthly_volume=volumes[0],
            quarterly_volume=volumes[1],
            annual_volume=volumes[2],
            deal_count=count,
        )


def resolve_basis(
    basis: CalculationBasis,
    event: DistributionEvent,
    aggregates: HistoricalAggregates,
) -> DecimalValue:
    """The amount a rule's rate or tiers are applied to."""
    if basis is CalculationBasis.DISTRIBUTION_AMOUNT:
        return event.amount
    if basis is CalculationBasis.CUMULATIVE_AMOUNT:
        return aggregates.cumulative_amount
    if basis is CalculationBasis.MONTHLY_VOLUME:
        return aggregates.monthly_volume
    if basis is CalculationBasis.QUARTERLY_VOLUME:
        return aggregates.quarterly_volume
    if basis is CalculationBasis.ANNUAL_VOLUME:
        return aggregates.annual_volume
    raise UnsupportedBasisError(str(basis))
