
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import exists, select

from marketplace.db.models.order_items import OrderItem, OrderItemStatus
from marketplace.db.models.payouts import PayoutItem, VendorPayout


async def get_payout_by_id(
    db: AsyncSession,
    payout_id: int,
    for_update: bool = False,
) -> Optional[VendorPayout]:
    stmt = select(VendorPayout).where(VendorPayout.id == payout_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update(of=VendorPayout)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_unpaid_out_items(
    db: AsyncSession,
    vendor_id: int,
) -> List[OrderItem]:
    """Settled, completed order items of a vendor that no payout has claimed yet."""
    already_paid_out = exists().where(PayoutItem.order_item_id == OrderItem.id)
    result = await db.execute(
        select(OrderItem)
        .where(
            OrderItem.vendor_id == vendor_id,
            OrderItem.status == OrderItemStatus.COMPLETED,
            OrderItem.settled_at.is_not(None),
            ~already_paid_out,
        )
        .order_by(OrderItem.id)
    )
    return list(result.scalars().all())


async def get_payouts_for_vendor(
    db: AsyncSession,
    vendor_id: int,
    limit: int = 10,
) -> List[VendorPayout]:
    result = await db.execute(
        select(VendorPayout)
        .where(VendorPayout.vendor_id == vendor_id)
        .order_by(VendorPayout.created_at.desc(), VendorPayout.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
