"""
Tests for the VAT engine.

Verifies:
- ADDED: vat on top, net equals gross
- INCLUDED: vat extracted with one rounding, net + vat == gross exactly
- NOT_APPLICABLE: zero VAT regardless of the rate passed
- Negative rates are rejected
"""

import pytest

from commission_kernel.domain.rules import VatMode
from commission_engines.vat import VatCalculator
from tests.conftest import D


class TestVatCalculator:
    def setup_method(self):
        self.vat = VatCalculator()

    def test_added(self):
        split = self.vat.split(gross=D("1750"), mode=VatMode.ADDED, rate=D("0.17"))
        assert split.vat_amount == D("297.5")
        assert split.net == D("1750")
        assert split.total == D("2047.5")

    def test_included(self):
        split = self.vat.split(gross=D("100"), mode=VatMode.INCLUDED, rate=D("0.17"))
        assert split.vat_amount == D("14.529914530")
        assert split.net == D("85.470085470")
        assert split.net + split.vat_amount == D("100")
        assert split.total == D("100")

    @pytest.mark.parametrize("gross", ["0.01", "1", "33.33", "999999.99", "123456.789"])
    @pytest.mark.parametrize("rate", ["0.17", "0.21", "0.0875"])
    def test_included_is_exact(self, gross, rate):
        split = self.vat.split(gross=D(gross), mode=VatMode.INCLUDED, rate=D(rate))
        assert split.net + split.vat_amount == D(gross)

    def test_not_applicable(self):
        split = self.vat.split(gross=D("500"), mode=VatMode.NOT_APPLICABLE, rate=D("0.17"))
        assert split.vat_amount == D("0")
        assert split.vat_rate == D("0")
        assert split.net == D("500")
        assert split.total == D("500")

    def test_mode_accepts_string(self):
        split = self.vat.split(gross=D("100"), mode="added", rate=D("0.1"))
        assert split.mode is VatMode.ADDED
        assert split.total == D("110")

    def test_negative_rate_rejected(self):
        with pytest.raises(ValueError):
            self.vat.split(gross=D("100"), mode=VatMode.ADDED, rate=D("-0.1"))

    def test_zero_rate_added(self):
        split = self.vat.split(gross=D("100"), mode=VatMode.ADDED, rate=D("0"))
        assert split.vat_amount == D("0")

    def test_to_trace(self):
        step = self.vat.split(gross=D("100"), mode=VatMode.ADDED, rate=D("0.17")).to_trace()
        assert step.step_type == "vat"
        assert step.to_dict()["outputs"]["total"] == "117"
