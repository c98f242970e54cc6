# marketplace/api/v1/routes_webhooks.py
import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.deps import get_payment_gateway
from marketplace.db.base import get_db
from marketplace.domain.payments.gateway.port import PaymentGateway
from marketplace.domain.payments.reconciliation import NotificationRejected, handle_notification

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhooks"])


def _ack(status_code: int, status: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": status, "message": message})


@router.post("/midtrans")
async def midtrans_notification_endpoint(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    try:
        payload = await request.json()
    except ValueError:
        return _ack(400, "error", "Invalid JSON body")
    if not isinstance(payload, dict):
        return _ack(400, "error", "Notification must be a JSON object")

    logger.info(
        "Midtrans notification received",
        order_number=payload.get("order_id"),
        transaction_status=payload.get("transaction_status"),
    )

    try:
        result = await handle_notification(db, payload, gateway)
    except Exception:
        # Midtrans redelivers on any non-2xx response.
        logger.exception("Notification handling failed", order_number=payload.get("order_id"))
        return _ack(500, "error", "Internal server error")

    if isinstance(result, NotificationRejected):
        return _ack(400, "error", result.error)
    return _ack(200, "success", result.message)
