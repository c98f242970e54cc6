
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import select

from marketplace.db.models.orders import Order
from marketplace.db.models.order_items import OrderItem


async def get_order_by_id(
    db: AsyncSession,
    order_id: int,
    for_update: bool = False,
) -> Optional[Order]:
    stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update(of=Order)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_order_by_number(
    db: AsyncSession,
    order_number: str,
    for_update: bool = False,
) -> Optional[Order]:
    stmt = select(Order).where(Order.order_number == order_number).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update(of=Order)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def order_number_exists(db: AsyncSession, order_number: str) -> bool:
    result = await db.execute(
        select(Order.id).where(Order.order_number == order_number)
    )
    return result.first() is not None


async def get_order_item(
    db: AsyncSession,
    item_id: int,
) -> Optional[OrderItem]:
    result = await db.execute(
        select(OrderItem).where(OrderItem.id == item_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
