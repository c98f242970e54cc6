# marketplace/api/deps.py
from functools import lru_cache

from marketplace.core.config import settings
from marketplace.domain.orders.service import OrderService
from marketplace.domain.payments.gateway import get_gateway
from marketplace.domain.payments.gateway.port import PaymentGateway
from marketplace.domain.payouts.service import PayoutService
from marketplace.domain.pricing.commission import CommissionCalculator
from marketplace.domain.pricing.tax import TaxCalculator


@lru_cache
def get_order_service() -> OrderService:
    config = settings.marketplace()
    return OrderService(
        commission=CommissionCalculator(config.default_commission_rate),
        tax=TaxCalculator(config.vat_rate, config.withholding_rate),
        order_number_prefix=config.order_number_prefix,
    )


@lru_cache
def get_payout_service() -> PayoutService:
    config = settings.marketplace()
    return PayoutService(config.minimum_payout, config.payout_number_prefix)


def get_payment_gateway() -> PaymentGateway:
    return get_gateway()
