
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import select

from marketplace.db.models.payments import Payment


async def get_payment_for_order(
    db: AsyncSession,
    order_id: int,
) -> Optional[Payment]:
    result = await db.execute(
        select(Payment).where(Payment.order_id == order_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
