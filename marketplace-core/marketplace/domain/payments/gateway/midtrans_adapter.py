"""Midtrans adapter: Snap sessions, Core API status and notification signatures."""

import hashlib
import hmac

import httpx
import structlog

from marketplace.core.errors import GatewayError
from marketplace.domain.payments.gateway.port import PaymentGateway, SessionToken, TransactionStatus

logger = structlog.get_logger(__name__)

SANDBOX_SNAP_URL = "https://app.sandbox.midtrans.com/snap/v1"
PRODUCTION_SNAP_URL = "https://app.midtrans.com/snap/v1"
SANDBOX_API_URL = "https://api.sandbox.midtrans.com/v2"
PRODUCTION_API_URL = "https://api.midtrans.com/v2"


class MidtransGateway(PaymentGateway):
    name = "midtrans"

    def __init__(
        self,
        server_key: str,
        is_production: bool = False,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.server_key = server_key
        self.snap_url = PRODUCTION_SNAP_URL if is_production else SANDBOX_SNAP_URL
        self.api_url = PRODUCTION_API_URL if is_production else SANDBOX_API_URL
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            auth=(self.server_key, ""),
            headers={"Accept": "application/json"},
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            async with self._client() as client:
                resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Midtrans request failed", url=url, error=str(exc))
            raise GatewayError(f"Midtrans unreachable: {exc}") from exc

        if resp.status_code >= 400:
            logger.error("Midtrans rejected request", url=url, status_code=resp.status_code, body=resp.text)
            raise GatewayError(f"Midtrans returned {resp.status_code}: {resp.text}", status_code=resp.status_code)
        return resp.json()

    async def create_transaction(self, payload: dict) -> SessionToken:
        data = await self._request("POST", f"{self.snap_url}/transactions", json=payload)
        if "token" not in data:
            raise GatewayError(f"Midtrans response has no token: {data}")
        return SessionToken(token=data["token"], redirect_url=data.get("redirect_url"))

    def _to_status(self, order_number: str, data: dict) -> TransactionStatus:
        # The Core API answers 200 with its own status_code for unknown orders.
        if str(data.get("status_code")) == "404":
            raise GatewayError(f"Transaction {order_number} not found", status_code=404)
        return TransactionStatus(
            order_id=data.get("order_id", order_number),
            transaction_status=data["transaction_status"],
            fraud_status=data.get("fraud_status"),
            transaction_id=data.get("transaction_id"),
            raw=data,
        )

    async def get_status(self, order_number: str) -> TransactionStatus:
        data = await self._request("GET", f"{self.api_url}/{order_number}/status")
        return self._to_status(order_number, data)

    async def cancel_transaction(self, order_number: str) -> TransactionStatus:
        data = await self._request("POST", f"{self.api_url}/{order_number}/cancel")
        return self._to_status(order_number, data)

    def signature_for(self, order_id: str, status_code: str, gross_amount: str) -> str:
        raw = f"{order_id}{status_code}{gross_amount}{self.server_key}"
        return hashlib.sha512(raw.encode()).hexdigest()

    def verify_notification(self, payload: dict) -> bool:
        signature = payload.get("signature_key")
        if not signature:
            return False
        expected = self.signature_for(
            str(payload.get("order_id", "")),
            str(payload.get("status_code", "")),
            str(payload.get("gross_amount", "")),
        )
        return hmac.compare_digest(expected, str(signature))
