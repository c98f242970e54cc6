"""Platform commission on vendor sales."""

from dataclasses import dataclass
from decimal import Decimal

from marketplace.domain.pricing.money import round_money, to_decimal


@dataclass(frozen=True)
class CommissionBreakdown:
    commission_rate: Decimal
    commission_amount: Decimal
    vendor_earnings: Decimal


class CommissionCalculator:
    """Computes the commission the platform keeps from a line subtotal.

    The applicable rate is the vendor's override, else the category's
    override, else the platform default the calculator was built with.
    """

    def __init__(self, default_rate: Decimal):
        self.default_rate = to_decimal(default_rate)

    def applicable_rate(
        self,
        vendor_rate: Decimal | None = None,
        category_rate: Decimal | None = None,
    ) -> Decimal:
        if vendor_rate is not None:
            return to_decimal(vendor_rate)
        if category_rate is not None:
            return to_decimal(category_rate)
        return self.default_rate

    def calculate(
        self,
        subtotal: Decimal,
        vendor_rate: Decimal | None = None,
        category_rate: Decimal | None = None,
    ) -> CommissionBreakdown:
        rate = self.applicable_rate(vendor_rate, category_rate)
        subtotal = to_decimal(subtotal)
        commission_amount = round_money(subtotal * rate)
        return CommissionBreakdown(
            commission_rate=rate,
            commission_amount=commission_amount,
            vendor_earnings=round_money(subtotal - commission_amount),
        )

    def for_sku(self, sku, subtotal: Decimal) -> CommissionBreakdown:
        product = sku.product
        category_rate = product.category.commission_rate if product.category is not None else None
        return self.calculate(subtotal, product.vendor.commission_rate, category_rate)
