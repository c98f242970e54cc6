
from typing import List, Optional
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import select

from marketplace.db.models.vendors import Vendor, VendorStatus


async def get_vendor_by_id(
    db: AsyncSession,
    vendor_id: int,
    for_update: bool = False,
) -> Optional[Vendor]:
    stmt = select(Vendor).where(Vendor.id == vendor_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def lock_vendors(
    db: AsyncSession,
    vendor_ids,
) -> List[Vendor]:
    """Lock vendor rows in ascending id order."""
    ids = sorted(set(vendor_ids))
    if not ids:
        return []
    result = await db.execute(
        select(Vendor)
        .where(Vendor.id.in_(ids))
        .order_by(Vendor.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_approved_vendors_with_balance(
    db: AsyncSession,
    minimum_balance: Decimal,
) -> List[Vendor]:
    result = await db.execute(
        select(Vendor)
        .where(Vendor.status == VendorStatus.APPROVED, Vendor.balance >= minimum_balance)
        .order_by(Vendor.id)
    )
    return list(result.scalars().all())
