"""Configurable fake payment gateway for development and testing.

This adapter simulates the hosted payment page flow without any external
calls. It can be configured at runtime to fail session creation, report a
given transaction status, or reject notification signatures.
"""

from uuid import uuid4

from marketplace.core.errors import GatewayError
from marketplace.domain.payments.gateway.port import PaymentGateway, SessionToken, TransactionStatus


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    name = "fake"

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Gateway unavailable"
        self.accept_signatures: bool = True
        self.statuses: dict[str, TransactionStatus] = {}
        self.calls: list[dict] = []

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Gateway unavailable",
        accept_signatures: bool = True,
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.accept_signatures = accept_signatures

    def set_status(self, order_number: str, transaction_status: str, fraud_status: str = "accept") -> None:
        self.statuses[order_number] = TransactionStatus(
            order_id=order_number,
            transaction_status=transaction_status,
            fraud_status=fraud_status,
            transaction_id=f"fake_txn_{uuid4().hex[:12]}",
        )

    async def create_transaction(self, payload: dict) -> SessionToken:
        self.calls.append({"method": "create_transaction", "payload": payload})

        if not self.should_succeed:
            raise GatewayError(self.failure_reason)

        order_number = payload["transaction_details"]["order_id"]
        token = f"fake_snap_{uuid4().hex[:16]}"
        return SessionToken(token=token, redirect_url=f"https://pay.example.test/{order_number}/{token}")

    async def get_status(self, order_number: str) -> TransactionStatus:
        self.calls.append({"method": "get_status", "order_number": order_number})

        if not self.should_succeed:
            raise GatewayError(self.failure_reason)
        if order_number not in self.statuses:
            raise GatewayError(f"Transaction {order_number} not found", status_code=404)
        return self.statuses[order_number]

    async def cancel_transaction(self, order_number: str) -> TransactionStatus:
        self.calls.append({"method": "cancel_transaction", "order_number": order_number})

        if not self.should_succeed:
            raise GatewayError(self.failure_reason)
        self.set_status(order_number, "cancel")
        return self.statuses[order_number]

    def verify_notification(self, payload: dict) -> bool:
        return self.accept_signatures
