"""Payment gateway port (abstract interface).

Defines the contract that payment gateway adapters implement so that the
Midtrans adapter can be swapped for the fake one in development and tests
without touching the checkout or reconciliation code.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class SessionToken:
    """A hosted payment page the shopper is redirected to."""

    token: str
    redirect_url: str | None = None


@dataclass(frozen=True)
class TransactionStatus:
    """Gateway view of a transaction, shaped like a webhook notification."""

    order_id: str
    transaction_status: str
    fraud_status: str | None = None
    transaction_id: str | None = None
    raw: dict = field(default_factory=dict)

    def as_notification(self) -> dict:
        payload = dict(self.raw)
        payload.update(
            order_id=self.order_id,
            transaction_status=self.transaction_status,
            transaction_id=self.transaction_id,
        )
        if self.fraud_status is not None:
            payload["fraud_status"] = self.fraud_status
        return payload


class PaymentGateway(ABC):
    """Abstract payment gateway interface.

    Methods raise ``GatewayError`` when the gateway cannot be reached or
    refuses the request.
    """

    name: str = "gateway"

    @abstractmethod
    async def create_transaction(self, payload: dict) -> SessionToken:
        """Open a payment session for an order."""
        ...

    @abstractmethod
    async def get_status(self, order_number: str) -> TransactionStatus:
        """Fetch the current status of an order's transaction."""
        ...

    @abstractmethod
    async def cancel_transaction(self, order_number: str) -> TransactionStatus:
        """Cancel an order's open transaction."""
        ...

    @abstractmethod
    def verify_notification(self, payload: dict) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...
