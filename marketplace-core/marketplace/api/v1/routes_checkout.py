# marketplace/api/v1/routes_checkout.py
import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import settings
from marketplace.core.errors import BusinessError
from marketplace.api.deps import get_order_service, get_payment_gateway
from marketplace.db.base import get_db
from marketplace.domain.orders.schemas import CheckoutOut, CheckoutRequest, OrderOut
from marketplace.domain.orders.service import OrderRejected, OrderService
from marketplace.domain.payments.gateway.port import PaymentGateway
from marketplace.domain.payments.service import SessionFailed, create_session

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/checkout", tags=["checkout"])


@router.post("", response_model=CheckoutOut, status_code=201)
async def checkout_endpoint(
    payload: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    result = await service.create_order(
        db,
        payload.cart_id,
        payload.address,
        payload.shipping_options,
        user_id=payload.user_id,
        customer_name=payload.customer_name,
        customer_email=payload.customer_email,
    )
    if isinstance(result, OrderRejected):
        raise BusinessError(result.message)

    order = result.order
    session = await create_session(db, order, gateway, settings.PAYMENT_FINISH_URL)
    if isinstance(session, SessionFailed):
        # The order stays pending; the client retries the payment session.
        body = CheckoutOut(
            order=OrderOut.model_validate(order),
            payment_error=session.error,
        )
        return JSONResponse(status_code=502, content=body.model_dump(mode="json"))

    return CheckoutOut(
        order=OrderOut.model_validate(order),
        payment_token=session.token,
        redirect_url=session.redirect_url,
    )
