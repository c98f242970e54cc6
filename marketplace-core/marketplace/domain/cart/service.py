# marketplace/domain/cart/service.py
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import delete, select

from marketplace.core.errors import NotFoundError
from marketplace.db.base import atomic
from marketplace.db.models.carts import Cart, CartItem
from marketplace.db.models.catalog import Sku
from marketplace.db.repositories.carts import get_cart_by_id, get_cart_for_owner, get_cart_item

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CartUpdate:
    success: bool
    message: str
    cart: Optional[Cart] = None


@dataclass
class VendorGroup:
    vendor_id: int
    vendor_name: str
    items: List[CartItem] = field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return sum((item.subtotal for item in self.items), Decimal("0"))

    @property
    def weight(self) -> Decimal:
        return sum((Decimal(item.sku.weight or 0) * item.quantity for item in self.items), Decimal("0"))


@dataclass(frozen=True)
class CartIssue:
    sku_id: int
    product_name: str
    message: str


@dataclass(frozen=True)
class CartValidation:
    issues: List[CartIssue]

    @property
    def valid(self) -> bool:
        return not self.issues


async def get_or_create_cart(
    db: AsyncSession,
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
    ttl: timedelta = timedelta(days=7),
) -> Cart:
    if user_id is None and session_id is None:
        raise ValueError("A cart needs a user id or a session id")

    cart = await get_cart_for_owner(db, user_id=user_id, session_id=session_id)
    if cart is not None:
        return cart

    async with atomic(db):
        cart = Cart(
            user_id=user_id,
            session_id=None if user_id is not None else session_id,
            expires_at=datetime.now(timezone.utc) + ttl,
            items=[],
        )
        db.add(cart)
        await db.flush()
    return await get_cart_by_id(db, cart.id)


async def add_item(
    db: AsyncSession,
    cart: Cart,
    sku_id: int,
    quantity: int = 1,
) -> CartUpdate:
    if quantity <= 0:
        return CartUpdate(False, "Quantity must be at least 1")

    sku = await db.get(Sku, sku_id, populate_existing=True)
    if sku is None:
        raise NotFoundError(f"SKU {sku_id} not found")

    if not sku.is_active or not sku.product.is_active:
        return CartUpdate(False, "Product is not available")

    existing = next((item for item in cart.items if item.sku_id == sku_id), None)
    new_quantity = quantity + (existing.quantity if existing is not None else 0)

    if not sku.has_stock(new_quantity):
        return CartUpdate(False, f"Insufficient stock. Available: {sku.available_stock}")

    async with atomic(db):
        if existing is not None:
            existing.quantity = new_quantity
        else:
            db.add(CartItem(cart_id=cart.id, sku_id=sku_id, quantity=quantity))
        await db.flush()

    return CartUpdate(True, "Item added to cart", await get_cart_by_id(db, cart.id))


async def update_quantity(
    db: AsyncSession,
    cart: Cart,
    item_id: int,
    quantity: int,
) -> CartUpdate:
    item = await get_cart_item(db, cart.id, item_id)
    if item is None:
        raise NotFoundError(f"Cart item {item_id} not found")

    if quantity <= 0:
        return await remove_item(db, cart, item_id)

    if not item.sku.has_stock(quantity):
        return CartUpdate(False, f"Insufficient stock. Available: {item.sku.available_stock}")

    async with atomic(db):
        item.quantity = quantity
        await db.flush()

    return CartUpdate(True, "Quantity updated", await get_cart_by_id(db, cart.id))


async def remove_item(
    db: AsyncSession,
    cart: Cart,
    item_id: int,
) -> CartUpdate:
    async with atomic(db):
        result = await db.execute(
            delete(CartItem).where(CartItem.cart_id == cart.id, CartItem.id == item_id)
        )
    if result.rowcount == 0:
        raise NotFoundError(f"Cart item {item_id} not found")
    return CartUpdate(True, "Item removed from cart", await get_cart_by_id(db, cart.id))


async def clear_cart(db: AsyncSession, cart_id: int) -> int:
    """Delete every item of a cart inside the caller's transaction."""
    result = await db.execute(delete(CartItem).where(CartItem.cart_id == cart_id))
    return result.rowcount


async def merge_guest_cart(
    db: AsyncSession,
    guest_session_id: str,
    user_id: str,
    ttl: timedelta = timedelta(days=30),
) -> Cart:
    """Move a guest cart's items into the user's cart after login."""
    user_cart = await get_or_create_cart(db, user_id=user_id, ttl=ttl)
    guest_cart = await get_cart_for_owner(db, session_id=guest_session_id)
    if guest_cart is None:
        return user_cart

    async with atomic(db):
        by_sku: Dict[int, CartItem] = {item.sku_id: item for item in user_cart.items}
        for guest_item in list(guest_cart.items):
            available = guest_item.sku.available_stock
            existing = by_sku.get(guest_item.sku_id)
            if existing is not None:
                existing.quantity = max(1, min(existing.quantity + guest_item.quantity, available))
            elif available > 0:
                quantity = min(guest_item.quantity, available)
                db.add(CartItem(cart_id=user_cart.id, sku_id=guest_item.sku_id, quantity=quantity))
            else:
                logger.info("Guest cart line dropped, out of stock", sku_id=guest_item.sku_id, user_id=user_id)
        await db.delete(guest_cart)
        await db.flush()

    logger.info("Guest cart merged", user_id=user_id, guest_cart_id=guest_cart.id, user_cart_id=user_cart.id)
    return await get_cart_by_id(db, user_cart.id)


async def purge_expired_carts(db: AsyncSession, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    async with atomic(db):
        expired = select(Cart.id).where(Cart.expires_at.is_not(None), Cart.expires_at < now)
        await db.execute(
            delete(CartItem)
            .where(CartItem.cart_id.in_(expired))
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(
            delete(Cart)
            .where(Cart.expires_at.is_not(None), Cart.expires_at < now)
            .execution_options(synchronize_session=False)
        )
    logger.info("Expired carts purged", count=result.rowcount)
    return result.rowcount


def group_by_vendor(cart: Cart) -> List[VendorGroup]:
    groups: Dict[int, VendorGroup] = {}
    for item in cart.items:
        vendor = item.sku.product.vendor
        group = groups.get(vendor.id)
        if group is None:
            group = groups[vendor.id] = VendorGroup(vendor_id=vendor.id, vendor_name=vendor.shop_name)
        group.items.append(item)
    return [groups[vendor_id] for vendor_id in sorted(groups)]


def summarize(cart: Cart) -> dict:
    groups = group_by_vendor(cart)
    return {
        "cart_id": cart.id,
        "subtotal": sum((group.subtotal for group in groups), Decimal("0")),
        "total_items": sum(item.quantity for item in cart.items),
        "total_weight": sum((group.weight for group in groups), Decimal("0")),
        "vendors": [
            {
                "vendor_id": group.vendor_id,
                "vendor_name": group.vendor_name,
                "subtotal": group.subtotal,
                "weight": group.weight,
                "items": [
                    {
                        "id": item.id,
                        "sku_id": item.sku_id,
                        "product_name": item.sku.product.name,
                        "sku_code": item.sku.sku_code,
                        "price": item.sku.price,
                        "quantity": item.quantity,
                        "subtotal": item.subtotal,
                    }
                    for item in group.items
                ],
            }
            for group in groups
        ],
    }


def validate_cart(cart: Cart) -> CartValidation:
    issues = []
    if not cart.items:
        return CartValidation([CartIssue(sku_id=0, product_name="", message="Cart is empty")])

    for item in cart.items:
        sku = item.sku
        name = sku.product.name
        if not sku.is_active or not sku.product.is_active:
            issues.append(CartIssue(sku.id, name, f"{name} is no longer available"))
            continue
        if not sku.has_stock(item.quantity):
            issues.append(
                CartIssue(
                    sku.id,
                    name,
                    f"{name} - Only {sku.available_stock} available, you have {item.quantity} in cart",
                )
            )
    return CartValidation(issues)
