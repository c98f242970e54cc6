"""Vendor balance bookkeeping.

A vendor's balance rises only when a paid order's commissions are settled
and falls when a payout completes or a paid order is cancelled before it
ships. Every change runs under a lock on the vendor row inside the
caller's transaction.
"""
from datetime import datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import InsufficientBalanceError, NotFoundError
from marketplace.db.models.orders import Order
from marketplace.db.models.vendors import Vendor
from marketplace.db.repositories.vendors import get_vendor_by_id, lock_vendors

logger = structlog.get_logger(__name__)


async def settle_order_commissions(db: AsyncSession, order: Order) -> Decimal:
    """Credit every vendor of a paid order with its items' stored earnings.

    Uses the commission snapshot taken at checkout, never the vendor's
    current rate. Items already settled are skipped. Returns the total
    credited.
    """
    pending = [item for item in order.items if item.settled_at is None]
    vendors = {vendor.id: vendor for vendor in await lock_vendors(db, [item.vendor_id for item in pending])}

    now = datetime.now(timezone.utc)
    credited = Decimal("0")
    for item in pending:
        vendor = vendors[item.vendor_id]
        vendor.balance = vendor.balance + item.vendor_earnings
        vendor.total_earnings = vendor.total_earnings + item.vendor_earnings
        item.settled_at = now
        credited += item.vendor_earnings
        logger.info(
            "Vendor earnings credited",
            order_number=order.order_number,
            order_item_id=item.id,
            vendor_id=vendor.id,
            amount=str(item.vendor_earnings),
            commission=str(item.commission_amount),
        )
    await db.flush()
    return credited


async def reverse_order_commissions(db: AsyncSession, order: Order) -> Decimal:
    """Take back the earnings credited for a paid order being cancelled.

    Cancellation is refused once anything shipped, and payouts only claim
    completed items, so none of these earnings can have been paid out yet.
    """
    settled = [item for item in order.items if item.settled_at is not None]
    vendors = {vendor.id: vendor for vendor in await lock_vendors(db, [item.vendor_id for item in settled])}

    reversed_total = Decimal("0")
    for item in settled:
        vendor = vendors[item.vendor_id]
        vendor.balance = vendor.balance - item.vendor_earnings
        vendor.total_earnings = vendor.total_earnings - item.vendor_earnings
        item.settled_at = None
        reversed_total += item.vendor_earnings
        logger.info(
            "Vendor earnings reversed",
            order_number=order.order_number,
            order_item_id=item.id,
            vendor_id=vendor.id,
            amount=str(item.vendor_earnings),
        )
    await db.flush()
    return reversed_total


async def debit_balance(db: AsyncSession, vendor_id: int, amount: Decimal) -> Vendor:
    vendor = await get_vendor_by_id(db, vendor_id, for_update=True)
    if vendor is None:
        raise NotFoundError(f"Vendor {vendor_id} not found")

    if vendor.balance < amount:
        logger.warning(
            "Vendor balance too low for debit",
            vendor_id=vendor_id,
            balance=str(vendor.balance),
            amount=str(amount),
        )
        raise InsufficientBalanceError(
            f"Vendor {vendor_id} balance {vendor.balance} is lower than {amount}"
        )

    vendor.balance = vendor.balance - amount
    await db.flush()
    return vendor
