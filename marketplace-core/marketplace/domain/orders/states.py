"""Order and order item lifecycles."""

from typing import Dict, FrozenSet

from marketplace.core.errors import InvalidTransitionError
from marketplace.db.models.order_items import OrderItemStatus
from marketplace.db.models.orders import OrderStatus

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.COMPLETED, OrderStatus.REFUNDED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

ITEM_TRANSITIONS: Dict[OrderItemStatus, FrozenSet[OrderItemStatus]] = {
    OrderItemStatus.PENDING: frozenset({OrderItemStatus.PROCESSING, OrderItemStatus.CANCELLED}),
    OrderItemStatus.PROCESSING: frozenset({OrderItemStatus.SHIPPED, OrderItemStatus.CANCELLED}),
    OrderItemStatus.SHIPPED: frozenset({OrderItemStatus.COMPLETED, OrderItemStatus.REFUNDED}),
    OrderItemStatus.COMPLETED: frozenset({OrderItemStatus.REFUNDED}),
    OrderItemStatus.CANCELLED: frozenset(),
    OrderItemStatus.REFUNDED: frozenset(),
}

# Paid or any state reachable from paid.
PAID_OR_LATER: FrozenSet[OrderStatus] = frozenset(
    {
        OrderStatus.PAID,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.COMPLETED,
        OrderStatus.REFUNDED,
    }
)

# Order state an item follows when the whole order moves forward.
ITEM_STATUS_FOR_ORDER: Dict[OrderStatus, OrderItemStatus] = {
    OrderStatus.PROCESSING: OrderItemStatus.PROCESSING,
    OrderStatus.SHIPPED: OrderItemStatus.SHIPPED,
    OrderStatus.COMPLETED: OrderItemStatus.COMPLETED,
    OrderStatus.CANCELLED: OrderItemStatus.CANCELLED,
    OrderStatus.REFUNDED: OrderItemStatus.REFUNDED,
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[OrderStatus(current)]


def ensure_transition(current: OrderStatus, target: OrderStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError("order", OrderStatus(current).value, OrderStatus(target).value)


def can_transition_item(current: OrderItemStatus, target: OrderItemStatus) -> bool:
    return target in ITEM_TRANSITIONS[OrderItemStatus(current)]


def ensure_item_transition(current: OrderItemStatus, target: OrderItemStatus) -> None:
    if not can_transition_item(current, target):
        raise InvalidTransitionError("order item", OrderItemStatus(current).value, OrderItemStatus(target).value)


def is_paid_or_later(status: OrderStatus) -> bool:
    return OrderStatus(status) in PAID_OR_LATER
