# marketplace/domain/payments/service.py
from dataclasses import dataclass, field
from typing import Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import BusinessError, GatewayError
from marketplace.db.base import atomic
from marketplace.db.models.orders import Order, OrderStatus
from marketplace.db.models.payments import Payment, PaymentStatus
from marketplace.db.repositories.orders import get_order_by_id
from marketplace.db.repositories.payments import get_payment_for_order
from marketplace.domain.payments.gateway.port import PaymentGateway
from marketplace.domain.payments.reconciliation import NotificationResult, handle_notification

logger = structlog.get_logger(__name__)

MAX_ITEM_NAME_LENGTH = 50


@dataclass(frozen=True)
class SessionCreated:
    payment: Payment
    token: str
    redirect_url: Optional[str]
    success: bool = field(default=True, init=False)


@dataclass(frozen=True)
class SessionFailed:
    error: str
    success: bool = field(default=False, init=False)


SessionResult = Union[SessionCreated, SessionFailed]


def build_transaction_payload(order: Order, finish_url: Optional[str] = None) -> dict:
    """Gateway request body for an order.

    Amounts are whole rupiah. Shipping and tax travel as extra item lines so
    the item lines always add up to the gross amount.
    """
    item_details = [
        {
            "id": item.sku_code,
            "price": int(item.price),
            "quantity": item.quantity,
            "name": item.product_name[:MAX_ITEM_NAME_LENGTH],
        }
        for item in order.items
    ]
    if order.shipping_cost > 0:
        item_details.append(
            {"id": "SHIPPING", "price": int(order.shipping_cost), "quantity": 1, "name": "Shipping Cost"}
        )
    if order.tax_amount > 0:
        item_details.append({"id": "TAX", "price": int(order.tax_amount), "quantity": 1, "name": "Tax"})

    payload = {
        "transaction_details": {
            "order_id": order.order_number,
            "gross_amount": int(order.total),
        },
        "customer_details": {
            "first_name": order.customer_name or order.shipping_name,
            "email": order.customer_email,
            "phone": order.shipping_phone,
            "shipping_address": {
                "first_name": order.shipping_name,
                "phone": order.shipping_phone,
                "address": order.shipping_address,
                "city": order.shipping_city,
                "postal_code": order.shipping_postal_code,
                "country_code": "IDN",
            },
        },
        "item_details": item_details,
    }
    if finish_url:
        payload["callbacks"] = {"finish": finish_url}
    return payload


async def create_session(
    db: AsyncSession,
    order: Order,
    gateway: PaymentGateway,
    finish_url: Optional[str] = None,
) -> SessionResult:
    """Open a hosted payment session for a pending order.

    The gateway is called outside any database transaction. On failure the
    order is left as it was and the session can be requested again.
    """
    if OrderStatus(order.status) != OrderStatus.PENDING:
        raise BusinessError(
            f"Order {order.order_number} is {OrderStatus(order.status).value}, only pending orders can be paid"
        )

    payload = build_transaction_payload(order, finish_url)
    try:
        session = await gateway.create_transaction(payload)
    except GatewayError as exc:
        logger.error("Payment session failed", order_number=order.order_number, error=str(exc))
        return SessionFailed(str(exc))

    async with atomic(db):
        payment = await get_payment_for_order(db, order.id)
        if payment is None:
            payment = Payment(order_id=order.id, payment_method=gateway.name)
            db.add(payment)
        payment.amount = order.total
        payment.status = PaymentStatus.PENDING
        payment.session_token = session.token
        payment.redirect_url = session.redirect_url
        await db.flush()

    logger.info("Payment session created", order_number=order.order_number, amount=str(order.total))
    return SessionCreated(payment=payment, token=session.token, redirect_url=session.redirect_url)


async def refresh_status(
    db: AsyncSession,
    order: Order,
    gateway: PaymentGateway,
) -> NotificationResult:
    """Pull the transaction status from the gateway and reconcile it.

    Used when a webhook was missed. The status comes straight from the
    gateway's API, so no signature is checked.
    """
    status = await gateway.get_status(order.order_number)
    logger.info(
        "Payment status fetched",
        order_number=order.order_number,
        transaction_status=status.transaction_status,
        fraud_status=status.fraud_status,
    )
    result = await handle_notification(db, status.as_notification(), gateway, verify=False)
    # Callers hold the order instance; make sure they see the reconciled row.
    await get_order_by_id(db, order.id)
    return result
