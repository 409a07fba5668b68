"""
VAT table -- explicit jurisdiction/date rate lookup.

A ``VatTable`` is passed into every calculation call.  Calculation functions
never fall back to a hardcoded rate: a missing entry is a
``VatRateNotFoundError`` for that rule x event pairing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from commission_kernel.domain.values import DecimalValue
from commission_kernel.exceptions import VatRateNotFoundError


@dataclass(frozen=True, slots=True)
class VatRate:
    jurisdiction: str
    rate: DecimalValue
    effective_from: date | None = None
    effective_to: date | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rate", DecimalValue.of(self.rate))
        if self.rate.is_negative:
            raise ValueError(f"VAT rate for {self.jurisdiction} cannot be negative")

    def covers(self, on_date: date) -> bool:
        if self.effective_from is not None and on_date < self.effective_from:
            return False
        return self.effective_to is None or on_date <= self.effective_to

    def to_dict(self) -> dict[str, Any]:
        return {
            "jurisdiction": self.jurisdiction,
            "rate": str(self.rate),
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
        }


@dataclass(frozen=True, slots=True)
class VatTable:
    """
    Immutable set of VAT rates.

    ``default_jurisdiction`` is used for rules that apply VAT without naming
    a jurisdiction.
    """

    rates: tuple[VatRate, ...] = ()
    default_jurisdiction: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", tuple(self.rates))

    def rate_for(self, jurisdiction: str | None, on_date: date) -> DecimalValue:
        """
        Return the rate effective on ``on_date``.

        When several entries overlap, the one with the latest
        ``effective_from`` wins.

        Raises:
            VatRateNotFoundError: No entry covers the jurisdiction and date.
        """
        code = jurisdiction or self.default_jurisdiction
        candidates = [
            r for r in self.rates if r.jurisdiction == code and r.covers(on_date)
        ]
        if not candidates:
            raise VatRateNotFoundError(code, on_date.isoformat())
        candidates.sort(key=lambda r: r.effective_from or date.min)
        return candidates[-1].rate

    def to_dict(self) -> dict[str, Any]:
        return {
            "default_jurisdiction": self.default_jurisdiction,
            "rates": [r.to_dict() for r in self.rates],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VatTable:
        rates = tuple(
            VatRate(
                jurisdiction=r["jurisdiction"],
                rate=DecimalValue.of(str(r["rate"])),
                effective_from=_opt_date(r.get("effective_from")),
                effective_to=_opt_date(r.get("effective_to")),
            )
            for r in data.get("rates", [])
        )
        return cls(rates=rates, default_jurisdiction=data.get("default_jurisdiction"))


def _opt_date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value))
