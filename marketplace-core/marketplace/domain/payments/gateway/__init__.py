"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- FakeGateway for development and testing
- MidtransGateway for production
"""

from marketplace.core.config import settings
from marketplace.domain.payments.gateway.fake_adapter import FakeGateway
from marketplace.domain.payments.gateway.midtrans_adapter import MidtransGateway
from marketplace.domain.payments.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def _default_gateway() -> PaymentGateway:
    if settings.PAYMENT_GATEWAY == "midtrans":
        return MidtransGateway(
            server_key=settings.MIDTRANS_SERVER_KEY,
            is_production=settings.MIDTRANS_IS_PRODUCTION,
        )
    return FakeGateway()


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway, built from settings on first use."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = _default_gateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None
