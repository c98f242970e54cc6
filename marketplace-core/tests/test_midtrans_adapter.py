import base64
import hashlib
import json

import httpx
import pytest

from marketplace.core.errors import GatewayError
from marketplace.domain.payments.gateway.midtrans_adapter import MidtransGateway

SERVER_KEY = "SB-Mid-server-test"


def gateway_with(handler, is_production=False):
    return MidtransGateway(SERVER_KEY, is_production=is_production, transport=httpx.MockTransport(handler))


class TestCreateTransaction:
    async def test_returns_snap_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"token": "snap-token", "redirect_url": "https://app.sandbox.midtrans.com/x"})

        session = await gateway_with(handler).create_transaction(
            {"transaction_details": {"order_id": "MV-1", "gross_amount": 1000}}
        )

        assert session.token == "snap-token"
        assert session.redirect_url == "https://app.sandbox.midtrans.com/x"
        assert seen["url"] == "https://app.sandbox.midtrans.com/snap/v1/transactions"
        assert seen["auth"] == "Basic " + base64.b64encode(f"{SERVER_KEY}:".encode()).decode()
        assert seen["body"]["transaction_details"]["order_id"] == "MV-1"

    async def test_production_url(self):
        seen = {}

        def handler(request):
            seen["host"] = request.url.host
            return httpx.Response(201, json={"token": "t"})

        await gateway_with(handler, is_production=True).create_transaction({})

        assert seen["host"] == "app.midtrans.com"

    async def test_http_error_status(self):
        def handler(request):
            return httpx.Response(401, json={"error_messages": ["Access denied"]})

        with pytest.raises(GatewayError) as excinfo:
            await gateway_with(handler).create_transaction({})

        assert excinfo.value.status_code == 401

    async def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayError):
            await gateway_with(handler).create_transaction({})

    async def test_response_without_token(self):
        with pytest.raises(GatewayError):
            await gateway_with(lambda request: httpx.Response(200, json={})).create_transaction({})


class TestStatus:
    async def test_get_status(self):
        def handler(request):
            assert request.url.path == "/v2/MV-1/status"
            return httpx.Response(
                200,
                json={
                    "status_code": "200",
                    "order_id": "MV-1",
                    "transaction_id": "abc-123",
                    "transaction_status": "settlement",
                    "fraud_status": "accept",
                },
            )

        status = await gateway_with(handler).get_status("MV-1")

        assert status.transaction_status == "settlement"
        assert status.transaction_id == "abc-123"
        notification = status.as_notification()
        assert notification["order_id"] == "MV-1"
        assert notification["fraud_status"] == "accept"

    async def test_unknown_transaction(self):
        def handler(request):
            return httpx.Response(200, json={"status_code": "404", "status_message": "Transaction doesn't exist."})

        with pytest.raises(GatewayError) as excinfo:
            await gateway_with(handler).get_status("MV-404")

        assert excinfo.value.status_code == 404

    async def test_cancel(self):
        def handler(request):
            assert request.method == "POST"
            assert request.url.path == "/v2/MV-1/cancel"
            return httpx.Response(200, json={"status_code": "200", "transaction_status": "cancel"})

        status = await gateway_with(handler).cancel_transaction("MV-1")

        assert status.order_id == "MV-1"
        assert status.transaction_status == "cancel"


class TestNotificationSignature:
    def signed(self, **overrides):
        payload = {"order_id": "MV-1", "status_code": "200", "gross_amount": "242000.00"}
        payload.update(overrides)
        raw = f"{payload['order_id']}{payload['status_code']}{payload['gross_amount']}{SERVER_KEY}"
        payload.setdefault("signature_key", hashlib.sha512(raw.encode()).hexdigest())
        return payload

    def test_valid_signature(self):
        assert MidtransGateway(SERVER_KEY).verify_notification(self.signed())

    def test_tampered_amount(self):
        payload = self.signed()
        payload["gross_amount"] = "1.00"

        assert not MidtransGateway(SERVER_KEY).verify_notification(payload)

    def test_missing_signature(self):
        payload = self.signed()
        del payload["signature_key"]

        assert not MidtransGateway(SERVER_KEY).verify_notification(payload)

    def test_other_server_key(self):
        assert not MidtransGateway("another-key").verify_notification(self.signed())
