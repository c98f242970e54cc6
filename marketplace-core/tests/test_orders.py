import re
from decimal import Decimal

import pytest
from sqlalchemy.sql import func, select

from marketplace.core.errors import BusinessError, InvalidTransitionError
from marketplace.db.models import Order, OrderItemStatus, OrderStatus
from marketplace.db.repositories.carts import get_cart_by_id
from marketplace.db.repositories.orders import get_order_by_id, get_order_item
from marketplace.domain.cart.service import CartValidation
from marketplace.domain.orders import service as orders
from marketplace.domain.orders.schemas import ShippingSelection
from marketplace.domain.orders.service import (
    OrderPlaced,
    OrderRejected,
    RejectionReason,
    advance_item,
    advance_order,
    cancel_order,
    get_order_summary,
    mark_as_completed,
    mark_as_paid,
    mark_as_processing,
    mark_as_shipped,
    refund_order,
)


async def place_order(order_service, db, make, address, quantity=2, stock=10, price="100000"):
    sku = await make.sku(price=price, stock=stock)
    cart = await make.cart((sku, quantity))
    result = await order_service.create_order(db, cart.id, address)
    assert isinstance(result, OrderPlaced)
    return result.order, sku


async def order_count(db):
    result = await db.execute(select(func.count(Order.id)))
    return result.scalar()


class TestCreateOrder:
    async def test_multi_vendor_order(self, db, make, order_service, address):
        vendor_a = await make.vendor("Toko A")
        vendor_b = await make.vendor("Toko B", commission_rate=Decimal("0.08"))
        sku_a = await make.sku(vendor_a, price="100000", stock=5)
        sku_b = await make.sku(vendor_b, price="50000", stock=5)
        cart = await make.cart((sku_a, 1), (sku_b, 2))
        shipping = [
            ShippingSelection(vendor_id=vendor_a.id, courier_name="jne", service="REG", cost=Decimal("15000")),
            ShippingSelection(vendor_id=vendor_b.id, courier_name="sicepat", service="BEST", cost=Decimal("10000")),
        ]

        result = await order_service.create_order(db, cart.id, address, shipping, customer_email="budi@example.test")

        assert result.success
        order = result.order
        assert re.fullmatch(r"MV-\d{12}-[0-9A-F]{4}", order.order_number)
        assert order.status == OrderStatus.PENDING
        assert order.subtotal == Decimal("200000")
        assert order.shipping_cost == Decimal("25000")
        assert order.vat_amount == Decimal("22000")
        assert order.marketplace_withholding == Decimal("5000")
        assert order.tax_amount == Decimal("27000")
        assert order.total == Decimal("252000")
        assert order.shipping_city == "Bandung"
        assert [entry.status for entry in order.status_history] == ["pending"]

        by_vendor = {item.vendor_id: item for item in order.items}
        assert by_vendor[vendor_a.id].commission_amount == Decimal("10000")
        assert by_vendor[vendor_a.id].vendor_earnings == Decimal("90000")
        assert by_vendor[vendor_b.id].commission_rate == Decimal("0.08")
        assert by_vendor[vendor_b.id].commission_amount == Decimal("8000")
        assert by_vendor[vendor_b.id].vendor_earnings == Decimal("92000")
        assert by_vendor[vendor_b.id].courier_name == "sicepat"

        await make.reload(sku_a)
        await make.reload(sku_b)
        assert sku_a.reserved_stock == 1
        assert sku_b.reserved_stock == 2
        assert (await get_cart_by_id(db, cart.id)).items == []

    async def test_item_taxes_add_up_to_order_tax(self, db, make, order_service, address):
        vendor = await make.vendor()
        skus = [await make.sku(vendor, price=price) for price in ("10000.05", "20000.05", "15.15")]
        cart = await make.cart(*[(sku, 1) for sku in skus])

        order = (await order_service.create_order(db, cart.id, address)).order

        assert sum((item.vat_amount for item in order.items), Decimal("0")) == order.vat_amount
        assert sum((item.tax_amount for item in order.items), Decimal("0")) == order.tax_amount

    async def test_vendor_shipping_is_charged_once(self, db, make, order_service, address):
        vendor = await make.vendor()
        first = await make.sku(vendor)
        second = await make.sku(vendor)
        cart = await make.cart((first, 1), (second, 1))
        shipping = [ShippingSelection(vendor_id=vendor.id, courier_name="jne", cost=Decimal("12000"))]

        order = (await order_service.create_order(db, cart.id, address, shipping)).order

        assert order.shipping_cost == Decimal("12000")
        assert sorted(item.shipping_cost for item in order.items) == [Decimal("0"), Decimal("12000")]

    async def test_commission_uses_category_rate(self, db, make, order_service, address):
        category = await make.category("Fashion", commission_rate=Decimal("0.15"))
        sku = await make.sku(price="100000", category=category)
        cart = await make.cart((sku, 1))

        order = (await order_service.create_order(db, cart.id, address)).order

        assert order.items[0].commission_amount == Decimal("15000")

    async def test_empty_cart_is_rejected(self, db, make, order_service, address):
        cart = await make.cart()

        result = await order_service.create_order(db, cart.id, address)

        assert isinstance(result, OrderRejected)
        assert result.reason == RejectionReason.CART_EMPTY
        assert await order_count(db) == 0

    async def test_unavailable_item_is_rejected(self, db, make, order_service, address):
        sku = await make.sku(stock=1)
        cart = await make.cart((sku, 2))

        result = await order_service.create_order(db, cart.id, address)

        assert result.reason == RejectionReason.ITEM_UNAVAILABLE
        assert result.sku_id == sku.id
        assert len(result.issues) == 1

    async def test_partial_stock_shortfall_rolls_back_everything(
        self, db, make, order_service, address, monkeypatch
    ):
        plenty = await make.sku(stock=10)
        scarce = await make.sku(stock=1)
        cart = await make.cart((plenty, 3), (scarce, 2))
        # Another checkout took the stock between validation and reservation.
        monkeypatch.setattr(orders, "validate_cart", lambda cart: CartValidation([]))

        result = await order_service.create_order(db, cart.id, address)

        assert isinstance(result, OrderRejected)
        assert result.reason == RejectionReason.INSUFFICIENT_STOCK
        assert result.sku_id == scarce.id
        assert await order_count(db) == 0
        await make.reload(plenty)
        await make.reload(scarce)
        assert plenty.reserved_stock == 0
        assert scarce.reserved_stock == 0
        assert len((await get_cart_by_id(db, cart.id)).items) == 2

    async def test_order_number_collision_is_retried(self, db, make, order_service, address, monkeypatch):
        taken = "MV-260101000000-AAAA"
        monkeypatch.setattr(order_service, "new_order_number", lambda: taken)
        await place_order(order_service, db, make, address)

        numbers = iter([taken, "MV-260101000000-BBBB"])
        monkeypatch.setattr(order_service, "new_order_number", lambda: next(numbers))
        order, sku = await place_order(order_service, db, make, address)

        assert order.order_number == "MV-260101000000-BBBB"
        await make.reload(sku)
        assert sku.reserved_stock == 2

    async def test_gives_up_after_repeated_collisions(self, db, make, order_service, address, monkeypatch):
        taken = "MV-260101000000-AAAA"
        monkeypatch.setattr(order_service, "new_order_number", lambda: taken)
        await place_order(order_service, db, make, address)

        sku = await make.sku()
        cart = await make.cart((sku, 1))
        with pytest.raises(BusinessError):
            await order_service.create_order(db, cart.id, address)
        assert await order_count(db) == 1


class TestPaymentTransitions:
    async def test_mark_as_paid_commits_stock(self, db, make, order_service, address):
        order, sku = await place_order(order_service, db, make, address, quantity=2, stock=10)

        order = await mark_as_paid(db, order)

        assert order.status == OrderStatus.PAID
        assert order.paid_at is not None
        await make.reload(sku)
        assert (sku.stock, sku.reserved_stock, sku.sold_count) == (8, 0, 2)

    async def test_cancel_pending_releases_reservation(self, db, make, order_service, address):
        order, sku = await place_order(order_service, db, make, address, quantity=2, stock=10)

        order = await cancel_order(db, order, "Changed my mind")

        assert order.status == OrderStatus.CANCELLED
        assert order.cancelled_at is not None
        assert all(item.status == OrderItemStatus.CANCELLED for item in order.items)
        assert order.status_history[-1].notes == "Changed my mind"
        await make.reload(sku)
        assert (sku.stock, sku.reserved_stock) == (10, 0)

    async def test_cancel_paid_order_restocks(self, db, make, order_service, address):
        order, sku = await place_order(order_service, db, make, address, quantity=2, stock=10)
        order = await mark_as_paid(db, order)

        await cancel_order(db, order)

        await make.reload(sku)
        assert (sku.stock, sku.reserved_stock) == (10, 0)

    async def test_cannot_cancel_once_an_item_shipped(self, db, make, order_service, address):
        order, sku = await place_order(order_service, db, make, address, quantity=2, stock=10)
        order = await mark_as_paid(db, order)
        order_id, item_id = order.id, order.items[0].id
        await advance_item(db, item_id, OrderItemStatus.PROCESSING)
        await advance_item(db, item_id, OrderItemStatus.SHIPPED, tracking_number="JNE0012345")

        with pytest.raises(BusinessError, match="shipped items"):
            await cancel_order(db, order)

        order = await get_order_by_id(db, order_id)
        assert order.status == OrderStatus.PAID
        assert order.items[0].status == OrderItemStatus.SHIPPED
        await make.reload(sku)
        assert (sku.stock, sku.reserved_stock) == (8, 0)

    async def test_cancel_twice_is_illegal(self, db, make, order_service, address):
        order, _ = await place_order(order_service, db, make, address)
        order = await cancel_order(db, order)

        with pytest.raises(InvalidTransitionError):
            await cancel_order(db, order)

    async def test_paid_requires_pending(self, db, make, order_service, address):
        order, _ = await place_order(order_service, db, make, address)
        order = await mark_as_paid(db, order)

        with pytest.raises(InvalidTransitionError):
            await mark_as_paid(db, order)


class TestFulfilment:
    async def test_full_lifecycle(self, db, make, order_service, address):
        order, _ = await place_order(order_service, db, make, address)
        order = await mark_as_paid(db, order)

        order = await mark_as_processing(db, order)
        order = await mark_as_shipped(db, order)
        order = await mark_as_completed(db, order)

        assert order.status == OrderStatus.COMPLETED
        assert order.completed_at is not None
        assert all(item.status == OrderItemStatus.COMPLETED for item in order.items)
        assert all(item.completed_at is not None for item in order.items)
        assert all(item.shipped_at is not None for item in order.items)
        assert [entry.status for entry in order.status_history] == [
            "pending",
            "paid",
            "processing",
            "shipped",
            "completed",
        ]

    async def test_cannot_skip_to_shipped(self, db, make, order_service, address):
        order, _ = await place_order(order_service, db, make, address)
        order_id = order.id

        with pytest.raises(InvalidTransitionError):
            await mark_as_shipped(db, order)

        order = await get_order_by_id(db, order_id)
        assert order.status == OrderStatus.PENDING

    async def test_completed_cannot_be_cancelled(self, db, make, order_service, address):
        order, _ = await place_order(order_service, db, make, address)
        for step in (mark_as_paid, mark_as_processing, mark_as_shipped, mark_as_completed):
            order = await step(db, order)

        with pytest.raises(InvalidTransitionError):
            await cancel_order(db, order)

    async def test_advance_order_rejects_non_fulfilment_targets(self, db, make, order_service, address):
        order, _ = await place_order(order_service, db, make, address)

        with pytest.raises(BusinessError):
            await advance_order(db, order, OrderStatus.PAID)

    async def test_item_already_ahead_is_left_alone(self, db, make, order_service, address):
        vendor_a = await make.vendor()
        vendor_b = await make.vendor()
        sku_a = await make.sku(vendor_a)
        sku_b = await make.sku(vendor_b)
        cart = await make.cart((sku_a, 1), (sku_b, 1))
        order = (await order_service.create_order(db, cart.id, address)).order
        order = await mark_as_paid(db, order)
        item_a = next(item for item in order.items if item.vendor_id == vendor_a.id)

        await advance_item(db, item_a.id, OrderItemStatus.PROCESSING)
        await advance_item(db, item_a.id, OrderItemStatus.SHIPPED, tracking_number="JNE0012345")
        order = await mark_as_processing(db, order)

        statuses = {item.vendor_id: item.status for item in order.items}
        assert statuses == {vendor_a.id: OrderItemStatus.SHIPPED, vendor_b.id: OrderItemStatus.PROCESSING}

    async def test_illegal_item_transition(self, db, make, order_service, address):
        order, _ = await place_order(order_service, db, make, address)
        order = await mark_as_paid(db, order)

        with pytest.raises(InvalidTransitionError):
            await advance_item(db, order.items[0].id, OrderItemStatus.COMPLETED)


class TestItemFulfilment:
    async def test_items_of_unpaid_order_stay_put(self, db, make, order_service, address):
        order, _ = await place_order(order_service, db, make, address)
        item_id = order.items[0].id

        with pytest.raises(InvalidTransitionError):
            await advance_item(db, item_id, OrderItemStatus.PROCESSING)

        item = await get_order_item(db, item_id)
        assert item.status == OrderItemStatus.PENDING

    async def test_shipping_records_waybill(self, db, make, order_service, address):
        order, _ = await place_order(order_service, db, make, address)
        order = await mark_as_paid(db, order)
        item_id = order.items[0].id

        await advance_item(db, item_id, OrderItemStatus.PROCESSING)
        item = await advance_item(
            db, item_id, OrderItemStatus.SHIPPED, tracking_number="SCP0098765", courier_name="sicepat"
        )

        assert item.status == OrderItemStatus.SHIPPED
        assert item.tracking_number == "SCP0098765"
        assert item.courier_name == "sicepat"
        assert item.shipped_at is not None

        item = await advance_item(db, item_id, OrderItemStatus.COMPLETED)
        assert item.completed_at is not None
        assert item.tracking_number == "SCP0098765"

    async def test_courier_defaults_to_checkout_choice(self, db, make, order_service, address):
        vendor = await make.vendor()
        cart = await make.cart((await make.sku(vendor), 1))
        shipping = [ShippingSelection(vendor_id=vendor.id, courier_name="jne", service="REG", cost=Decimal("10000"))]
        order = (await order_service.create_order(db, cart.id, address, shipping)).order
        order = await mark_as_paid(db, order)
        item_id = order.items[0].id

        await advance_item(db, item_id, OrderItemStatus.PROCESSING)
        item = await advance_item(db, item_id, OrderItemStatus.SHIPPED, tracking_number="JNE0012345")

        assert item.courier_name == "jne"
        assert item.courier_service == "REG"

    async def test_shipping_requires_tracking_number(self, db, make, order_service, address):
        order, _ = await place_order(order_service, db, make, address)
        order = await mark_as_paid(db, order)
        item_id = order.items[0].id
        await advance_item(db, item_id, OrderItemStatus.PROCESSING)

        with pytest.raises(BusinessError):
            await advance_item(db, item_id, OrderItemStatus.SHIPPED)

        item = await get_order_item(db, item_id)
        assert item.status == OrderItemStatus.PROCESSING
        assert item.tracking_number is None
        assert item.shipped_at is None


class TestRefund:
    async def test_refund_shipped_order_restocks(self, db, make, order_service, address):
        order, sku = await place_order(order_service, db, make, address, quantity=2, stock=10)
        for step in (mark_as_paid, mark_as_processing, mark_as_shipped):
            order = await step(db, order)

        order = await refund_order(db, order, "Damaged in transit")

        assert order.status == OrderStatus.REFUNDED
        assert all(item.status == OrderItemStatus.REFUNDED for item in order.items)
        await make.reload(sku)
        assert sku.stock == 10

    async def test_refund_requires_shipment(self, db, make, order_service, address):
        order, _ = await place_order(order_service, db, make, address)
        order = await mark_as_paid(db, order)

        with pytest.raises(InvalidTransitionError):
            await refund_order(db, order)


async def test_order_summary_groups_by_vendor(db, make, order_service, address):
    vendor_a = await make.vendor()
    vendor_b = await make.vendor()
    cart = await make.cart((await make.sku(vendor_b), 1), (await make.sku(vendor_a), 2))
    shipping = [ShippingSelection(vendor_id=vendor_a.id, courier_name="jne", service="REG", cost=Decimal("9000"))]
    order = (await order_service.create_order(db, cart.id, address, shipping)).order

    summary = get_order_summary(order)

    assert [vendor["vendor_id"] for vendor in summary["vendors"]] == [vendor_a.id, vendor_b.id]
    assert summary["vendors"][0]["shipping"] == {"courier": "jne", "service": "REG", "cost": Decimal("9000")}
    assert summary["tax"]["total"] == order.tax_amount
    assert summary["status"] == "pending"
