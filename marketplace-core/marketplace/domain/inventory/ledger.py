"""Stock ledger: reserve, release, commit and restock SKU units.

Every operation locks the SKU row (``SELECT ... FOR UPDATE``) inside the
caller's transaction before reading it, so concurrent checkouts competing
for the same units are serialized by the database. The lock is released
when the surrounding transaction commits or rolls back.
"""
from typing import Iterable, List

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import select

from marketplace.core.errors import NotFoundError
from marketplace.db.models.catalog import Sku

logger = structlog.get_logger(__name__)


def _check_quantity(quantity: int) -> None:
    if quantity <= 0:
        raise ValueError(f"Quantity must be positive, got {quantity}")


async def lock_sku(db: AsyncSession, sku_id: int) -> Sku:
    result = await db.execute(
        select(Sku)
        .where(Sku.id == sku_id)
        .with_for_update(of=Sku)
        .execution_options(populate_existing=True)
    )
    sku = result.scalar_one_or_none()
    if sku is None:
        raise NotFoundError(f"SKU {sku_id} not found")
    return sku


async def lock_skus(db: AsyncSession, sku_ids: Iterable[int]) -> List[Sku]:
    """Lock several SKU rows in ascending id order."""
    ids = sorted(set(sku_ids))
    if not ids:
        return []
    result = await db.execute(
        select(Sku)
        .where(Sku.id.in_(ids))
        .order_by(Sku.id)
        .with_for_update(of=Sku)
        .execution_options(populate_existing=True)
    )
    skus = list(result.scalars().all())
    if len(skus) != len(ids):
        missing = set(ids) - {sku.id for sku in skus}
        raise NotFoundError(f"SKUs not found: {sorted(missing)}")
    return skus


async def reserve(db: AsyncSession, sku_id: int, quantity: int) -> bool:
    """Hold ``quantity`` units against an unpaid order.

    Returns False when fewer units are available; that is an ordinary
    outcome for the caller to handle, not an error.
    """
    _check_quantity(quantity)
    sku = await lock_sku(db, sku_id)

    if not sku.has_stock(quantity):
        logger.info(
            "Stock reservation refused",
            sku_id=sku.id,
            requested=quantity,
            stock=sku.stock,
            reserved_stock=sku.reserved_stock,
        )
        return False

    sku.reserved_stock += quantity
    await db.flush()
    logger.debug("Stock reserved", sku_id=sku.id, quantity=quantity, reserved_stock=sku.reserved_stock)
    return True


async def release(db: AsyncSession, sku_id: int, quantity: int) -> int:
    """Give reserved units back to available stock. Returns units released."""
    _check_quantity(quantity)
    sku = await lock_sku(db, sku_id)

    released = min(quantity, sku.reserved_stock)
    if released < quantity:
        logger.warning(
            "Releasing more stock than reserved",
            sku_id=sku.id,
            requested=quantity,
            reserved_stock=sku.reserved_stock,
        )
    sku.reserved_stock -= released
    await db.flush()
    logger.debug("Stock released", sku_id=sku.id, quantity=released, reserved_stock=sku.reserved_stock)
    return released


async def commit(db: AsyncSession, sku_id: int, quantity: int) -> None:
    """Consume reserved units permanently once an order is paid."""
    _check_quantity(quantity)
    sku = await lock_sku(db, sku_id)

    if sku.reserved_stock < quantity or sku.stock < quantity:
        # A commit must always follow a reservation of the same size.
        raise ValueError(
            f"Cannot commit {quantity} units of SKU {sku.id}: "
            f"stock={sku.stock}, reserved_stock={sku.reserved_stock}"
        )

    sku.stock -= quantity
    sku.reserved_stock -= quantity
    sku.sold_count += quantity
    await db.flush()
    logger.debug("Stock committed", sku_id=sku.id, quantity=quantity, stock=sku.stock)
    if sku.is_low_stock:
        logger.warning(
            "SKU stock low",
            sku_id=sku.id,
            available_stock=sku.available_stock,
            threshold=sku.low_stock_threshold,
        )


async def restock(db: AsyncSession, sku_id: int, quantity: int) -> None:
    _check_quantity(quantity)
    sku = await lock_sku(db, sku_id)

    sku.stock += quantity
    await db.flush()
    logger.debug("Stock restocked", sku_id=sku.id, quantity=quantity, stock=sku.stock)
