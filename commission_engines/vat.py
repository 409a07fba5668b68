"""
VAT Engine - split a gross commission into net and VAT.

Pure functions with no I/O; the rate is always passed in (looked up from an
explicit ``VatTable`` by the calculator).

Modes:
    added           vat = gross x rate          net = gross        total = gross + vat
    included        vat = gross x rate/(1+rate) net = gross - vat  total = gross
    not_applicable  vat = 0                     net = gross        total = gross

In included mode ``net + vat == gross`` holds exactly because net is derived
by subtraction after a single rounding of vat.
"""

from __future__ import annotations

from dataclasses import dataclass

from commission_kernel.domain.results import TraceStep
from commission_kernel.domain.rules import VatMode
from commission_kernel.domain.values import DecimalValue
from commission_kernel.logging_config import get_logger
from commission_engines.tracer import traced_engine

logger = get_logger("engines.vat")


@dataclass(frozen=True)
class VatSplit:
    """Result of splitting one gross amount."""

    mode: VatMode
    vat_rate: DecimalValue
    gross: DecimalValue
    vat_amount: DecimalValue
    net: DecimalValue
    total: DecimalValue

    def to_trace(self) -> TraceStep:
        formulas = {
            VatMode.ADDED: "vat = gross x rate; total = gross + vat",
            VatMode.INCLUDED: "vat = gross x rate / (1 + rate); net = gross - vat",
            VatMode.NOT_APPLICABLE: "vat = 0",
        }
        return TraceStep(
            step_type="vat",
            inputs={
                "vat_mode": self.mode.value,
                "vat_rate": self.vat_rate,
                "gross_commission": self.gross,
            },
            outputs={
                "vat_amount": self.vat_amount,
                "net_commission": self.net,
                "total": self.total,
            },
            formula=formulas[self.mode],
        )


class VatCalculator:
    """
    Split gross commissions into net and VAT.

    Pure functions - no I/O, no rate lookup.
    """

    @traced_engine("vat", "1.0", fingerprint_fields=("gross", "mode", "rate"))
    def split(
        self,
        *,
        gross: DecimalValue,
        mode: VatMode,
        rate: DecimalValue,
    ) -> VatSplit:
        mode = VatMode(mode)
        if mode is VatMode.NOT_APPLICABLE:
            return VatSplit(
                mode=mode,
                vat_rate=DecimalValue.zero(),
                gross=gross,
                vat_amount=DecimalValue.zero(),
                net=gross,
                total=gross,
            )

        if rate.is_negative:
            logger.error("vat_rate_negative", extra={"rate": str(rate)})
            raise ValueError("VAT rate cannot be negative")

        if mode is VatMode.ADDED:
            vat = gross * rate
            result = VatSplit(
                mode=mode,
                vat_rate=rate,
                gross=gross,
                vat_amount=vat,
                net=gross,
                total=gross + vat,
            )
        else:
            # One division, one rounding: (gross x rate) / (1 + rate)
            vat = gross.scale_by(rate, rate + 1)
            result = VatSplit(
                mode=mode,
                vat_rate=rate,
                gross=gross,
                vat_amount=vat,
                net=gross - vat,
                total=gross,
            )

        logger.debug(
            "vat_split_completed",
            extra={
                "vat_mode": mode.value,
                "vat_rate": str(rate),
                "gross": str(gross),
                "vat_amount": str(result.vat_amount),
                "net": str(result.net),
            },
        )
        return result
