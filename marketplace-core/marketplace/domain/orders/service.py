# marketplace/domain/orders/service.py
import enum
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Union

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import BusinessError, InvalidTransitionError, NotFoundError
from marketplace.db.base import atomic
from marketplace.db.models.carts import Cart
from marketplace.db.models.order_items import OrderItem, OrderItemStatus
from marketplace.db.models.orders import Order, OrderStatus, OrderStatusHistory
from marketplace.db.repositories.carts import get_cart_by_id
from marketplace.db.repositories.orders import get_order_by_id, get_order_item, order_number_exists
from marketplace.domain.cart.service import CartIssue, clear_cart, group_by_vendor, validate_cart
from marketplace.domain.inventory import ledger
from marketplace.domain.orders.schemas import ShippingAddress, ShippingSelection
from marketplace.domain.orders.states import (
    ITEM_STATUS_FOR_ORDER,
    can_transition_item,
    ensure_item_transition,
    ensure_transition,
    is_paid_or_later,
)
from marketplace.domain.payouts.balances import reverse_order_commissions
from marketplace.domain.pricing.commission import CommissionCalculator
from marketplace.domain.pricing.tax import TaxCalculator

logger = structlog.get_logger(__name__)

MAX_ORDER_NUMBER_ATTEMPTS = 5


class RejectionReason(str, enum.Enum):
    CART_EMPTY = "cart_empty"
    ITEM_UNAVAILABLE = "item_unavailable"
    INSUFFICIENT_STOCK = "insufficient_stock"


@dataclass(frozen=True)
class OrderPlaced:
    order: Order
    success: bool = field(default=True, init=False)


@dataclass(frozen=True)
class OrderRejected:
    reason: RejectionReason
    message: str
    sku_id: Optional[int] = None
    issues: List[CartIssue] = field(default_factory=list)
    success: bool = field(default=False, init=False)


CreateOrderResult = Union[OrderPlaced, OrderRejected]


class _ReservationFailed(Exception):
    def __init__(self, sku_id: int, product_name: str, requested: int, available: int):
        self.sku_id = sku_id
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(f"Failed to reserve stock for {product_name}")


class _OrderNumberConflict(Exception):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_order_number(prefix: str = "MV", now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"{prefix}-{now:%y%m%d%H%M%S}-{secrets.token_hex(2).upper()}"


def record_status(order: Order, status: OrderStatus, notes: Optional[str] = None) -> None:
    order.status_history.append(
        OrderStatusHistory(status=OrderStatus(status).value, notes=notes, occurred_at=utcnow())
    )


class OrderService:
    """Turns a cart into an order inside a single transaction.

    Stock for every line is reserved through the ledger while the order and
    its item snapshots are written; if any reservation fails nothing of the
    order survives and the caller gets an ``OrderRejected``.
    """

    def __init__(
        self,
        commission: CommissionCalculator,
        tax: TaxCalculator,
        order_number_prefix: str = "MV",
    ):
        self.commission = commission
        self.tax = tax
        self.order_number_prefix = order_number_prefix

    def new_order_number(self) -> str:
        return generate_order_number(self.order_number_prefix)

    async def create_order(
        self,
        db: AsyncSession,
        cart_id: int,
        address: ShippingAddress,
        shipping_options: Iterable[ShippingSelection] = (),
        user_id: Optional[str] = None,
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> CreateOrderResult:
        shipping_options = list(shipping_options)
        for attempt in range(1, MAX_ORDER_NUMBER_ATTEMPTS + 1):
            try:
                return await self._create_order_once(
                    db, cart_id, address, shipping_options, user_id, customer_name, customer_email
                )
            except _OrderNumberConflict as exc:
                logger.warning("Order number collision, retrying", order_number=str(exc), attempt=attempt)
        raise BusinessError("Could not allocate a unique order number")

    async def _create_order_once(
        self,
        db: AsyncSession,
        cart_id: int,
        address: ShippingAddress,
        shipping_options: List[ShippingSelection],
        user_id: Optional[str],
        customer_name: Optional[str],
        customer_email: Optional[str],
    ) -> CreateOrderResult:
        cart = await get_cart_by_id(db, cart_id)
        if cart is None:
            raise NotFoundError(f"Cart {cart_id} not found")

        if not cart.items:
            return OrderRejected(RejectionReason.CART_EMPTY, "Cart is empty")

        validation = validate_cart(cart)
        if not validation.valid:
            first = validation.issues[0]
            return OrderRejected(
                RejectionReason.ITEM_UNAVAILABLE,
                first.message,
                sku_id=first.sku_id,
                issues=validation.issues,
            )

        try:
            async with atomic(db):
                order_id = await self._place(
                    db, cart, address, shipping_options, user_id or cart.user_id, customer_name, customer_email
                )
        except _ReservationFailed as exc:
            logger.warning(
                "Order creation rolled back: insufficient stock",
                cart_id=cart_id,
                sku_id=exc.sku_id,
                requested=exc.requested,
                available=exc.available,
            )
            return OrderRejected(
                RejectionReason.INSUFFICIENT_STOCK,
                f"{exc.product_name} - Only {exc.available} available",
                sku_id=exc.sku_id,
            )
        except _OrderNumberConflict:
            raise
        except Exception:
            logger.exception("Order creation failed", cart_id=cart_id)
            raise

        order = await get_order_by_id(db, order_id)
        logger.info(
            "Order created",
            order_number=order.order_number,
            cart_id=cart_id,
            total=str(order.total),
            items=len(order.items),
        )
        return OrderPlaced(order)

    async def _place(
        self,
        db: AsyncSession,
        cart: Cart,
        address: ShippingAddress,
        shipping_options: List[ShippingSelection],
        user_id: Optional[str],
        customer_name: Optional[str],
        customer_email: Optional[str],
    ) -> int:
        # Lock every SKU of the cart up front, in ascending id order.
        await ledger.lock_skus(db, [item.sku_id for item in cart.items])

        groups = group_by_vendor(cart)
        selections = {option.vendor_id: option for option in shipping_options}

        line_subtotals = [item.subtotal for group in groups for item in group.items]
        subtotal = sum(line_subtotals, Decimal("0"))
        shipping_cost = sum(
            (selections[group.vendor_id].cost for group in groups if group.vendor_id in selections),
            Decimal("0"),
        )
        tax = self.tax.calculate_lines(line_subtotals)

        order_number = self.new_order_number()
        if await order_number_exists(db, order_number):
            raise _OrderNumberConflict(order_number)

        order = Order(
            order_number=order_number,
            user_id=user_id,
            customer_name=customer_name or address.recipient_name,
            customer_email=customer_email,
            status=OrderStatus.PENDING,
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            vat_amount=tax.vat_amount,
            marketplace_withholding=tax.marketplace_withholding,
            tax_amount=tax.total_tax,
            total=subtotal + shipping_cost + tax.total_tax,
            shipping_name=address.recipient_name,
            shipping_phone=address.phone,
            shipping_address=address.address_line,
            shipping_city=address.city,
            shipping_province=address.province,
            shipping_postal_code=address.postal_code,
            items=[],
            status_history=[],
        )
        db.add(order)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise _OrderNumberConflict(order_number) from exc

        for group in groups:
            selection = selections.get(group.vendor_id)
            for index, cart_item in enumerate(group.items):
                sku = cart_item.sku
                line_subtotal = cart_item.subtotal
                commission = self.commission.for_sku(sku, line_subtotal)
                item_tax = self.tax.calculate(line_subtotal)
                # The vendor's shipping cost is carried by its first line only.
                carries_shipping = selection is not None and index == 0

                order.items.append(
                    OrderItem(
                        vendor_id=group.vendor_id,
                        sku_id=sku.id,
                        product_name=sku.product.name,
                        sku_code=sku.sku_code,
                        price=sku.price,
                        quantity=cart_item.quantity,
                        subtotal=line_subtotal,
                        commission_rate=commission.commission_rate,
                        commission_amount=commission.commission_amount,
                        vendor_earnings=commission.vendor_earnings,
                        vat_amount=item_tax.vat_amount,
                        withholding_amount=item_tax.marketplace_withholding,
                        tax_amount=item_tax.total_tax,
                        shipping_cost=selection.cost if carries_shipping else Decimal("0"),
                        courier_name=selection.courier_name if selection is not None else None,
                        courier_service=selection.service if selection is not None else None,
                        status=OrderItemStatus.PENDING,
                    )
                )

                if not await ledger.reserve(db, sku.id, cart_item.quantity):
                    raise _ReservationFailed(sku.id, sku.product.name, cart_item.quantity, sku.available_stock)

        record_status(order, OrderStatus.PENDING, "Order created")
        await clear_cart(db, cart.id)
        await db.flush()
        return order.id


async def _lock_order(db: AsyncSession, order_id: int) -> Order:
    order = await get_order_by_id(db, order_id, for_update=True)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


# Items past this point have left the warehouse.
_SHIPPED_ITEM_STATUSES = frozenset(
    {OrderItemStatus.SHIPPED, OrderItemStatus.COMPLETED, OrderItemStatus.REFUNDED}
)


async def cancel_order(db: AsyncSession, order: Order, reason: Optional[str] = None) -> Order:
    """Cancel a pending or paid order and give its units back.

    A pending order only holds reservations, which are released. A paid
    order has already consumed its units, which are restocked instead, and
    the earnings credited to its vendors at settlement are taken back. Once
    any vendor has shipped an item the order can only be refunded.
    """
    async with atomic(db):
        order = await _lock_order(db, order.id)
        ensure_transition(order.status, OrderStatus.CANCELLED)
        was_paid = order.status == OrderStatus.PAID

        shipped = [item.id for item in order.items if item.status in _SHIPPED_ITEM_STATUSES]
        if shipped:
            raise BusinessError(
                f"Order {order.order_number} has shipped items {shipped} and cannot be cancelled"
            )

        await ledger.lock_skus(db, [item.sku_id for item in order.items])
        for item in order.items:
            if was_paid:
                await ledger.restock(db, item.sku_id, item.quantity)
            else:
                await ledger.release(db, item.sku_id, item.quantity)
            item.status = OrderItemStatus.CANCELLED

        reversed_earnings = await reverse_order_commissions(db, order) if was_paid else Decimal("0")

        order.status = OrderStatus.CANCELLED
        order.cancelled_at = utcnow()
        record_status(order, OrderStatus.CANCELLED, reason or "Order cancelled")
        await db.flush()

    logger.info(
        "Order cancelled",
        order_number=order.order_number,
        reason=reason,
        was_paid=was_paid,
        reversed_earnings=str(reversed_earnings),
    )
    return order


async def mark_as_paid(db: AsyncSession, order: Order) -> Order:
    """Move a pending order to paid and consume its reserved units."""
    async with atomic(db):
        order = await _lock_order(db, order.id)
        ensure_transition(order.status, OrderStatus.PAID)

        order.status = OrderStatus.PAID
        order.paid_at = utcnow()
        record_status(order, OrderStatus.PAID, "Payment confirmed")

        await ledger.lock_skus(db, [item.sku_id for item in order.items])
        for item in order.items:
            await ledger.commit(db, item.sku_id, item.quantity)
        await db.flush()

    logger.info("Order paid", order_number=order.order_number, total=str(order.total))
    return order


async def refund_order(db: AsyncSession, order: Order, reason: Optional[str] = None) -> Order:
    async with atomic(db):
        order = await _lock_order(db, order.id)
        ensure_transition(order.status, OrderStatus.REFUNDED)

        await ledger.lock_skus(db, [item.sku_id for item in order.items])
        for item in order.items:
            if item.status == OrderItemStatus.CANCELLED:
                continue
            await ledger.restock(db, item.sku_id, item.quantity)
            item.status = OrderItemStatus.REFUNDED

        order.status = OrderStatus.REFUNDED
        record_status(order, OrderStatus.REFUNDED, reason or "Order refunded")
        await db.flush()

    logger.info("Order refunded", order_number=order.order_number, reason=reason)
    return order


_FORWARD_NOTES = {
    OrderStatus.PROCESSING: "Order is being processed",
    OrderStatus.SHIPPED: "Order has been shipped",
    OrderStatus.COMPLETED: "Order completed successfully",
}


async def advance_order(
    db: AsyncSession,
    order: Order,
    target: OrderStatus,
    notes: Optional[str] = None,
) -> Order:
    """Move an order forward through fulfilment, dragging its items along."""
    if target not in _FORWARD_NOTES:
        raise BusinessError(f"Use the dedicated operation to move an order to {OrderStatus(target).value}")

    async with atomic(db):
        order = await _lock_order(db, order.id)
        ensure_transition(order.status, target)
        now = utcnow()

        item_target = ITEM_STATUS_FOR_ORDER[target]
        for item in order.items:
            _advance_item_towards(item, item_target, now)

        order.status = target
        if target == OrderStatus.COMPLETED:
            order.completed_at = now
        record_status(order, target, notes or _FORWARD_NOTES[target])
        await db.flush()

    logger.info("Order status changed", order_number=order.order_number, status=OrderStatus(target).value)
    return order


def _advance_item_towards(item: OrderItem, target: OrderItemStatus, now: datetime) -> None:
    # Walk the item forward one step at a time so items already ahead are left alone.
    path = [OrderItemStatus.PROCESSING, OrderItemStatus.SHIPPED, OrderItemStatus.COMPLETED]
    for step in path[: path.index(target) + 1]:
        if can_transition_item(item.status, step):
            item.status = step
    if item.status in (OrderItemStatus.SHIPPED, OrderItemStatus.COMPLETED) and item.shipped_at is None:
        item.shipped_at = now
    if item.status == OrderItemStatus.COMPLETED and item.completed_at is None:
        item.completed_at = now


async def mark_as_processing(db: AsyncSession, order: Order) -> Order:
    return await advance_order(db, order, OrderStatus.PROCESSING)


async def mark_as_shipped(db: AsyncSession, order: Order) -> Order:
    return await advance_order(db, order, OrderStatus.SHIPPED)


async def mark_as_completed(db: AsyncSession, order: Order) -> Order:
    return await advance_order(db, order, OrderStatus.COMPLETED)


async def advance_item(
    db: AsyncSession,
    item_id: int,
    target: OrderItemStatus,
    tracking_number: Optional[str] = None,
    courier_name: Optional[str] = None,
) -> OrderItem:
    """Per-vendor fulfilment of a single order item.

    Only items of a paid order move. Shipping an item records the waybill:
    a tracking number is required and ``courier_name`` overrides the courier
    chosen at checkout.
    """
    async with atomic(db):
        item = await get_order_item(db, item_id)
        if item is None:
            raise NotFoundError(f"Order item {item_id} not found")
        order = await _lock_order(db, item.order_id)
        item = await get_order_item(db, item_id)

        current = OrderItemStatus(item.status)
        if not is_paid_or_later(order.status):
            raise InvalidTransitionError(
                f"item of {OrderStatus(order.status).value} order", current.value, OrderItemStatus(target).value
            )
        ensure_item_transition(current, target)

        now = utcnow()
        if target == OrderItemStatus.SHIPPED:
            if not tracking_number:
                raise BusinessError("A tracking number is required to ship an item")
            item.tracking_number = tracking_number
            if courier_name:
                item.courier_name = courier_name
            item.shipped_at = now
        elif target == OrderItemStatus.COMPLETED:
            item.completed_at = now
        item.status = target
        await db.flush()

    logger.info(
        "Order item status changed",
        order_number=order.order_number,
        item_id=item_id,
        vendor_id=item.vendor_id,
        status=OrderItemStatus(target).value,
        tracking_number=item.tracking_number,
    )
    return item


def get_order_summary(order: Order) -> dict:
    by_vendor = {}
    for item in order.items:
        by_vendor.setdefault(item.vendor_id, []).append(item)

    return {
        "order_number": order.order_number,
        "subtotal": order.subtotal,
        "shipping_cost": order.shipping_cost,
        "tax": {
            "vat": order.vat_amount,
            "withholding": order.marketplace_withholding,
            "total": order.tax_amount,
        },
        "total": order.total,
        "status": OrderStatus(order.status).value,
        "shipping_address": {
            "name": order.shipping_name,
            "phone": order.shipping_phone,
            "address": order.shipping_address,
            "city": order.shipping_city,
            "province": order.shipping_province,
            "postal_code": order.shipping_postal_code,
        },
        "vendors": [
            {
                "vendor_id": vendor_id,
                "items": [
                    {
                        "product_name": item.product_name,
                        "sku_code": item.sku_code,
                        "quantity": item.quantity,
                        "price": item.price,
                        "subtotal": item.subtotal,
                    }
                    for item in items
                ],
                "shipping": {
                    "courier": items[0].courier_name,
                    "service": items[0].courier_service,
                    "cost": sum((item.shipping_cost for item in items), Decimal("0")),
                },
            }
            for vendor_id, items in sorted(by_vendor.items())
        ],
    }
