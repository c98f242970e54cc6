from decimal import Decimal

import pytest

from marketplace.domain.pricing.commission import CommissionCalculator
from marketplace.domain.pricing.money import round_money
from marketplace.domain.pricing.tax import TaxCalculator


@pytest.fixture()
def commission():
    return CommissionCalculator(Decimal("0.10"))


@pytest.fixture()
def tax():
    return TaxCalculator(Decimal("0.11"), Decimal("0.025"))


class TestCommission:
    def test_vendor_rate_wins(self, commission):
        result = commission.calculate(Decimal("100000"), vendor_rate=Decimal("0.08"), category_rate=Decimal("0.15"))

        assert result.commission_rate == Decimal("0.08")
        assert result.commission_amount == Decimal("8000.00")
        assert result.vendor_earnings == Decimal("92000.00")

    def test_category_rate_when_vendor_has_none(self, commission):
        result = commission.calculate(Decimal("100000"), category_rate=Decimal("0.15"))

        assert result.commission_rate == Decimal("0.15")
        assert result.commission_amount == Decimal("15000.00")

    def test_default_rate(self, commission):
        result = commission.calculate(Decimal("100000"))

        assert result.commission_rate == Decimal("0.10")
        assert result.vendor_earnings == Decimal("90000.00")

    def test_zero_vendor_rate_is_an_override(self, commission):
        result = commission.calculate(Decimal("100000"), vendor_rate=Decimal("0"))

        assert result.commission_amount == Decimal("0.00")
        assert result.vendor_earnings == Decimal("100000.00")

    def test_amount_and_earnings_add_up(self, commission):
        result = commission.calculate(Decimal("33333.33"), vendor_rate=Decimal("0.075"))

        assert result.commission_amount + result.vendor_earnings == Decimal("33333.33")


class TestTax:
    def test_vat_and_withholding(self, tax):
        result = tax.calculate(Decimal("100000"))

        assert result.vat_amount == Decimal("11000.00")
        assert result.marketplace_withholding == Decimal("2500.00")
        assert result.total_tax == Decimal("13500.00")

    def test_rounds_half_up(self, tax):
        result = tax.calculate(Decimal("1.00"))

        assert result.marketplace_withholding == Decimal("0.03")

    def test_order_tax_is_sum_of_line_taxes(self, tax):
        lines = [Decimal("10000.05"), Decimal("20000.05"), Decimal("15.15")]

        order = tax.calculate_lines(lines)
        per_line = [tax.calculate(line) for line in lines]

        assert order.vat_amount == sum((t.vat_amount for t in per_line), Decimal("0"))
        assert order.marketplace_withholding == sum((t.marketplace_withholding for t in per_line), Decimal("0"))

    def test_no_lines(self, tax):
        assert tax.calculate_lines([]).total_tax == Decimal("0")


def test_round_money_accepts_floats():
    assert round_money(0.125) == Decimal("0.13")
