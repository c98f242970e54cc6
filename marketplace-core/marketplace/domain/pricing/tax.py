"""VAT and marketplace withholding (PMK 37/2025)."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from marketplace.domain.pricing.money import round_money, to_decimal

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class TaxBreakdown:
    vat_amount: Decimal
    marketplace_withholding: Decimal

    @property
    def total_tax(self) -> Decimal:
        return self.vat_amount + self.marketplace_withholding

    def __add__(self, other: "TaxBreakdown") -> "TaxBreakdown":
        return TaxBreakdown(
            vat_amount=self.vat_amount + other.vat_amount,
            marketplace_withholding=self.marketplace_withholding + other.marketplace_withholding,
        )


class TaxCalculator:
    def __init__(self, vat_rate: Decimal, withholding_rate: Decimal):
        self.vat_rate = to_decimal(vat_rate)
        self.withholding_rate = to_decimal(withholding_rate)

    def calculate(self, subtotal: Decimal) -> TaxBreakdown:
        subtotal = to_decimal(subtotal)
        return TaxBreakdown(
            vat_amount=round_money(subtotal * self.vat_rate),
            marketplace_withholding=round_money(subtotal * self.withholding_rate),
        )

    def calculate_lines(self, subtotals: Iterable[Decimal]) -> TaxBreakdown:
        """Order-level tax as the sum of per-line taxes.

        Rounding happens per line so that the order breakdown always equals
        the sum of the item breakdowns stored on the order items.
        """
        total = TaxBreakdown(ZERO, ZERO)
        for subtotal in subtotals:
            total = total + self.calculate(subtotal)
        return total
