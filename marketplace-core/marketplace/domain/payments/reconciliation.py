"""Payment reconciliation.

Applies gateway notifications to orders and payments. Delivery is
at-least-once, so every branch is guarded by the order's current status:
an order that is already paid (or beyond) is never settled twice, and a
failure for an order that is already cancelled changes nothing.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.db.base import atomic
from marketplace.db.models.orders import Order, OrderStatus
from marketplace.db.models.payments import Payment, PaymentStatus
from marketplace.db.repositories.orders import get_order_by_number
from marketplace.db.repositories.payments import get_payment_for_order
from marketplace.domain.orders.service import cancel_order, mark_as_paid
from marketplace.domain.orders.states import is_paid_or_later
from marketplace.domain.payments.gateway.port import PaymentGateway
from marketplace.domain.payouts.balances import settle_order_commissions

logger = structlog.get_logger(__name__)

SUCCESS_STATUSES = frozenset({"capture", "settlement"})
FAILURE_STATUSES = frozenset({"deny", "cancel", "expire"})
PENDING_STATUSES = frozenset({"pending"})


@dataclass(frozen=True)
class NotificationProcessed:
    message: str
    order_status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    success: bool = field(default=True, init=False)


@dataclass(frozen=True)
class NotificationRejected:
    error: str
    success: bool = field(default=False, init=False)


NotificationResult = Union[NotificationProcessed, NotificationRejected]


def _amount(payload: dict, order: Order) -> Decimal:
    try:
        return Decimal(str(payload["gross_amount"]))
    except (KeyError, InvalidOperation):
        return order.total


async def _find_or_create_payment(db: AsyncSession, order: Order, payload: dict) -> Payment:
    payment = await get_payment_for_order(db, order.id)
    if payment is None:
        payment = Payment(
            order_id=order.id,
            payment_method=payload.get("payment_type") or "midtrans",
            amount=_amount(payload, order),
            status=PaymentStatus.PENDING,
        )
        db.add(payment)
    elif payload.get("payment_type"):
        payment.payment_method = payload["payment_type"]

    if payload.get("transaction_id"):
        payment.transaction_id = payload["transaction_id"]
    payment.gateway_response = payload
    await db.flush()
    return payment


async def handle_notification(
    db: AsyncSession,
    payload: dict,
    gateway: PaymentGateway,
    verify: bool = True,
) -> NotificationResult:
    if verify and not gateway.verify_notification(payload):
        logger.warning("Notification signature rejected", order_number=payload.get("order_id"))
        return NotificationRejected("Invalid signature")

    order_number = payload.get("order_id")
    transaction_status = payload.get("transaction_status")
    fraud_status = payload.get("fraud_status") or "accept"
    if not order_number or not transaction_status:
        logger.warning("Notification missing fields", payload_keys=sorted(payload))
        return NotificationRejected("Missing order_id or transaction_status")

    log = logger.bind(
        order_number=order_number,
        transaction_status=transaction_status,
        fraud_status=fraud_status,
        transaction_id=payload.get("transaction_id"),
    )

    known = SUCCESS_STATUSES | FAILURE_STATUSES | PENDING_STATUSES
    if transaction_status not in known:
        log.warning("Unsupported transaction status")
        return NotificationRejected(f"Unsupported transaction status: {transaction_status}")

    async with atomic(db):
        # The order row lock serializes concurrent deliveries for the same order.
        order = await get_order_by_number(db, order_number, for_update=True)
        if order is None:
            log.warning("Notification for unknown order")
            return NotificationRejected(f"Order {order_number} not found")

        status = OrderStatus(order.status)
        if is_paid_or_later(status):
            log.info("Notification ignored, order already paid", order_status=status.value)
            return NotificationProcessed("Order already paid", order_status=status)

        if status == OrderStatus.CANCELLED:
            if transaction_status in SUCCESS_STATUSES:
                log.error("Payment received for cancelled order, manual refund needed")
                return NotificationRejected(
                    f"Order {order_number} is cancelled, payment needs a manual refund"
                )
            log.info("Notification ignored, order already cancelled")
            return NotificationProcessed("Order already cancelled", order_status=status)

        payment = await _find_or_create_payment(db, order, payload)
        now = datetime.now(timezone.utc)

        if transaction_status in SUCCESS_STATUSES:
            if fraud_status != "accept":
                payment.status = PaymentStatus.FAILED
                payment.failed_at = now
                payment.notes = f"Fraud status: {fraud_status}"
                await db.flush()
                log.warning("Payment held for fraud review")
                return NotificationProcessed(
                    f"Payment flagged by fraud detection: {fraud_status}",
                    order_status=status,
                    payment_status=PaymentStatus.FAILED,
                )

            payment.status = PaymentStatus.SUCCESS
            payment.paid_at = now
            await db.flush()
            order = await mark_as_paid(db, order)
            credited = await settle_order_commissions(db, order)
            log.info("Payment settled", total=str(order.total), vendor_earnings=str(credited))
            return NotificationProcessed(
                "Payment successful",
                order_status=OrderStatus.PAID,
                payment_status=PaymentStatus.SUCCESS,
            )

        if transaction_status in PENDING_STATUSES:
            payment.status = PaymentStatus.PENDING
            await db.flush()
            log.info("Payment pending")
            return NotificationProcessed(
                "Payment pending",
                order_status=status,
                payment_status=PaymentStatus.PENDING,
            )

        payment.status = PaymentStatus.FAILED
        payment.failed_at = now
        payment.notes = f"Payment {transaction_status}"
        await db.flush()
        order = await cancel_order(db, order, f"Payment {transaction_status}")
        log.info("Payment failed, order cancelled")
        return NotificationProcessed(
            f"Payment {transaction_status}",
            order_status=OrderStatus.CANCELLED,
            payment_status=PaymentStatus.FAILED,
        )
