
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import select

from marketplace.db.models.carts import Cart, CartItem


async def get_cart_by_id(
    db: AsyncSession,
    cart_id: int,
) -> Optional[Cart]:
    result = await db.execute(
        select(Cart).where(Cart.id == cart_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_cart_for_owner(
    db: AsyncSession,
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Optional[Cart]:
    if user_id is not None:
        stmt = select(Cart).where(Cart.user_id == user_id)
    else:
        stmt = select(Cart).where(Cart.session_id == session_id)
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def get_cart_item(
    db: AsyncSession,
    cart_id: int,
    item_id: int,
) -> Optional[CartItem]:
    result = await db.execute(
        select(CartItem).where(CartItem.cart_id == cart_id, CartItem.id == item_id)
    )
    return result.scalar_one_or_none()
