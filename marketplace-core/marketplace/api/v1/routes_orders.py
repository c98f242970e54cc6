# marketplace/api/v1/routes_orders.py
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.deps import get_payment_gateway
from marketplace.core.config import settings
from marketplace.core.errors import BusinessError, GatewayError, NotFoundError
from marketplace.db.base import get_db
from marketplace.db.models.orders import Order, OrderStatus
from marketplace.db.repositories.orders import get_order_by_number
from marketplace.domain.orders.schemas import (
    CancelRequest,
    ItemStatusChange,
    OrderItemOut,
    OrderOut,
    StatusChange,
)
from marketplace.domain.orders.service import (
    advance_item,
    advance_order,
    cancel_order,
    get_order_summary,
    refund_order,
)
from marketplace.domain.payments.gateway.port import PaymentGateway
from marketplace.domain.payments.reconciliation import NotificationRejected
from marketplace.domain.payments.schemas import PaymentSessionOut, ReconciliationOut
from marketplace.domain.payments.service import SessionFailed, create_session, refresh_status


router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


async def _load_order(db: AsyncSession, order_number: str) -> Order:
    order = await get_order_by_number(db, order_number)
    if order is None:
        raise NotFoundError(f"Order {order_number} not found")
    return order


@router.get("/{order_number}", response_model=OrderOut)
async def get_order_endpoint(
    order_number: str,
    db: AsyncSession = Depends(get_db),
):
    return await _load_order(db, order_number)


@router.get("/{order_number}/summary")
async def get_order_summary_endpoint(
    order_number: str,
    db: AsyncSession = Depends(get_db),
):
    return get_order_summary(await _load_order(db, order_number))


@router.post("/{order_number}/cancel", response_model=OrderOut)
async def cancel_order_endpoint(
    order_number: str,
    payload: CancelRequest,
    db: AsyncSession = Depends(get_db),
):
    order = await _load_order(db, order_number)
    await cancel_order(db, order, payload.reason)
    return await _load_order(db, order_number)


@router.post("/{order_number}/refund", response_model=OrderOut)
async def refund_order_endpoint(
    order_number: str,
    payload: CancelRequest,
    db: AsyncSession = Depends(get_db),
):
    order = await _load_order(db, order_number)
    await refund_order(db, order, payload.reason)
    return await _load_order(db, order_number)


@router.post("/{order_number}/status", response_model=OrderOut)
async def change_status_endpoint(
    order_number: str,
    payload: StatusChange,
    db: AsyncSession = Depends(get_db),
):
    order = await _load_order(db, order_number)
    if payload.status == OrderStatus.CANCELLED:
        await cancel_order(db, order, payload.notes)
    elif payload.status == OrderStatus.REFUNDED:
        await refund_order(db, order, payload.notes)
    elif payload.status == OrderStatus.PAID:
        raise BusinessError("Orders are marked paid by payment confirmation only")
    else:
        await advance_order(db, order, payload.status, payload.notes)
    return await _load_order(db, order_number)


@router.post("/{order_number}/items/{item_id}/status", response_model=OrderItemOut)
async def change_item_status_endpoint(
    order_number: str,
    item_id: int,
    payload: ItemStatusChange,
    db: AsyncSession = Depends(get_db),
):
    order = await _load_order(db, order_number)
    if all(item.id != item_id for item in order.items):
        raise NotFoundError(f"Order item {item_id} not found in {order_number}")
    return await advance_item(db, item_id, payload.status, payload.tracking_number, payload.courier_name)


@router.post("/{order_number}/payment", response_model=PaymentSessionOut)
async def create_payment_endpoint(
    order_number: str,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    order = await _load_order(db, order_number)
    session = await create_session(db, order, gateway, settings.PAYMENT_FINISH_URL)
    if isinstance(session, SessionFailed):
        raise GatewayError(session.error)
    return PaymentSessionOut(
        order_number=order_number,
        payment_token=session.token,
        redirect_url=session.redirect_url,
    )


@router.post("/{order_number}/payment/refresh", response_model=ReconciliationOut)
async def refresh_payment_endpoint(
    order_number: str,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    order = await _load_order(db, order_number)
    result = await refresh_status(db, order, gateway)
    if isinstance(result, NotificationRejected):
        raise BusinessError(result.error)
    return ReconciliationOut(
        order_number=order_number,
        message=result.message,
        order_status=result.order_status,
        payment_status=result.payment_status,
    )
