# marketplace/api/v1/routes_cart.py
from dataclasses import asdict
from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import settings
from marketplace.core.errors import BusinessError, NotFoundError
from marketplace.db.base import get_db
from marketplace.db.models.carts import Cart
from marketplace.db.repositories.carts import get_cart_by_id
from marketplace.domain.cart.schemas import (
    AddCartItem,
    CartOpen,
    CartOut,
    CartValidationOut,
    MergeCart,
    UpdateCartItem,
)
from marketplace.domain.cart.service import (
    CartUpdate,
    add_item,
    get_or_create_cart,
    merge_guest_cart,
    remove_item,
    summarize,
    update_quantity,
    validate_cart,
)


router = APIRouter(prefix="/api/v1/carts", tags=["carts"])


async def _load_cart(db: AsyncSession, cart_id: int) -> Cart:
    cart = await get_cart_by_id(db, cart_id)
    if cart is None:
        raise NotFoundError(f"Cart {cart_id} not found")
    return cart


def _unwrap(update: CartUpdate) -> dict:
    if not update.success:
        raise BusinessError(update.message)
    return summarize(update.cart)


@router.post("", response_model=CartOut)
async def open_cart_endpoint(
    payload: CartOpen,
    db: AsyncSession = Depends(get_db),
):
    if payload.user_id is None and payload.session_id is None:
        raise BusinessError("A cart needs a user id or a session id")
    ttl_days = settings.CART_TTL_DAYS_USER if payload.user_id else settings.CART_TTL_DAYS_GUEST
    cart = await get_or_create_cart(
        db,
        user_id=payload.user_id,
        session_id=payload.session_id,
        ttl=timedelta(days=ttl_days),
    )
    return summarize(cart)


@router.post("/merge", response_model=CartOut)
async def merge_cart_endpoint(
    payload: MergeCart,
    db: AsyncSession = Depends(get_db),
):
    cart = await merge_guest_cart(
        db,
        payload.guest_session_id,
        payload.user_id,
        ttl=timedelta(days=settings.CART_TTL_DAYS_USER),
    )
    return summarize(cart)


@router.get("/{cart_id}", response_model=CartOut)
async def get_cart_endpoint(
    cart_id: int,
    db: AsyncSession = Depends(get_db),
):
    return summarize(await _load_cart(db, cart_id))


@router.get("/{cart_id}/validation", response_model=CartValidationOut)
async def validate_cart_endpoint(
    cart_id: int,
    db: AsyncSession = Depends(get_db),
):
    validation = validate_cart(await _load_cart(db, cart_id))
    return {"valid": validation.valid, "issues": [asdict(issue) for issue in validation.issues]}


@router.post("/{cart_id}/items", response_model=CartOut)
async def add_item_endpoint(
    cart_id: int,
    payload: AddCartItem,
    db: AsyncSession = Depends(get_db),
):
    cart = await _load_cart(db, cart_id)
    return _unwrap(await add_item(db, cart, payload.sku_id, payload.quantity))


@router.patch("/{cart_id}/items/{item_id}", response_model=CartOut)
async def update_item_endpoint(
    cart_id: int,
    item_id: int,
    payload: UpdateCartItem,
    db: AsyncSession = Depends(get_db),
):
    cart = await _load_cart(db, cart_id)
    return _unwrap(await update_quantity(db, cart, item_id, payload.quantity))


@router.delete("/{cart_id}/items/{item_id}", response_model=CartOut)
async def remove_item_endpoint(
    cart_id: int,
    item_id: int,
    db: AsyncSession = Depends(get_db),
):
    cart = await _load_cart(db, cart_id)
    return _unwrap(await remove_item(db, cart, item_id))
