# marketplace/domain/payouts/service.py
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func, select

from marketplace.core.errors import BusinessError, NotFoundError
from marketplace.db.base import atomic
from marketplace.db.models.payouts import PayoutItem, PayoutStatus, VendorPayout
from marketplace.db.models.vendors import Vendor
from marketplace.db.repositories.payouts import get_payout_by_id, get_payouts_for_vendor, get_unpaid_out_items
from marketplace.db.repositories.vendors import get_approved_vendors_with_balance, get_vendor_by_id
from marketplace.domain.orders.service import generate_order_number, utcnow
from marketplace.domain.payouts.balances import debit_balance

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PayoutSummary:
    vendor_id: int
    payout_id: int
    payout_number: str
    amount: Decimal


@dataclass
class PayoutRunReport:
    processed: int = 0
    failed: int = 0
    total_amount: Decimal = Decimal("0")
    payouts: List[PayoutSummary] = field(default_factory=list)


class PayoutService:
    """Batches vendors' settled earnings into payouts.

    Creating a payout only claims order items; the vendor balance is debited
    when the transfer is confirmed through ``process_payout``.
    """

    def __init__(self, minimum_payout: Decimal, payout_number_prefix: str = "PO"):
        self.minimum_payout = Decimal(minimum_payout)
        self.payout_number_prefix = payout_number_prefix

    async def create_payout(self, db: AsyncSession, vendor: Vendor) -> Optional[VendorPayout]:
        async with atomic(db):
            vendor = await get_vendor_by_id(db, vendor.id, for_update=True)
            if vendor is None:
                raise NotFoundError("Vendor not found")

            if not vendor.is_approved:
                logger.info("Payout skipped, vendor not approved", vendor_id=vendor.id)
                return None
            if vendor.balance < self.minimum_payout:
                logger.info(
                    "Payout skipped, balance below minimum",
                    vendor_id=vendor.id,
                    balance=str(vendor.balance),
                    minimum=str(self.minimum_payout),
                )
                return None

            items = await get_unpaid_out_items(db, vendor.id)
            amount = sum((item.vendor_earnings for item in items), Decimal("0"))
            if not items or amount < self.minimum_payout:
                logger.info(
                    "Payout skipped, below minimum",
                    vendor_id=vendor.id,
                    amount=str(amount),
                    minimum=str(self.minimum_payout),
                )
                return None

            payout = VendorPayout(
                vendor_id=vendor.id,
                payout_number=generate_order_number(self.payout_number_prefix),
                amount=amount,
                status=PayoutStatus.PENDING,
                method="bank_transfer",
                bank_details={
                    "bank_name": vendor.bank_name,
                    "account_number": vendor.bank_account_number,
                    "account_name": vendor.bank_account_name,
                },
                items=[PayoutItem(order_item_id=item.id, amount=item.vendor_earnings) for item in items],
            )
            db.add(payout)
            await db.flush()

        logger.info(
            "Payout created",
            vendor_id=vendor.id,
            payout_number=payout.payout_number,
            amount=str(amount),
            items=len(items),
        )
        return await get_payout_by_id(db, payout.id)

    async def run_scheduled(self, db: AsyncSession) -> PayoutRunReport:
        report = PayoutRunReport()
        vendors = await get_approved_vendors_with_balance(db, self.minimum_payout)
        # Plain ids, since a failed vendor's rollback expires loaded instances.
        for vendor_id in [vendor.id for vendor in vendors]:
            try:
                vendor = await get_vendor_by_id(db, vendor_id)
                payout = await self.create_payout(db, vendor)
            except Exception:
                report.failed += 1
                logger.exception("Payout creation failed", vendor_id=vendor_id)
                continue

            if payout is not None:
                report.processed += 1
                report.total_amount += payout.amount
                report.payouts.append(
                    PayoutSummary(
                        vendor_id=vendor_id,
                        payout_id=payout.id,
                        payout_number=payout.payout_number,
                        amount=payout.amount,
                    )
                )

        logger.info(
            "Scheduled payouts finished",
            vendors=len(vendors),
            processed=report.processed,
            failed=report.failed,
            total_amount=str(report.total_amount),
        )
        return report

    async def process_payout(
        self,
        db: AsyncSession,
        payout_id: int,
        reference_number: Optional[str] = None,
    ) -> VendorPayout:
        """Confirm the transfer of a payout and debit the vendor."""
        async with atomic(db):
            payout = await _lock_payout(db, payout_id)
            if payout.status not in (PayoutStatus.PENDING, PayoutStatus.PROCESSING):
                raise BusinessError(f"Payout {payout.payout_number} is {PayoutStatus(payout.status).value}")

            await debit_balance(db, payout.vendor_id, payout.amount)
            payout.status = PayoutStatus.COMPLETED
            payout.reference_number = reference_number
            payout.processed_at = utcnow()
            await db.flush()

        logger.info(
            "Payout completed",
            payout_number=payout.payout_number,
            vendor_id=payout.vendor_id,
            amount=str(payout.amount),
            reference_number=reference_number,
        )
        return payout

    async def cancel_payout(self, db: AsyncSession, payout_id: int, reason: str) -> VendorPayout:
        """Fail a pending payout and hand its order items back to the pool."""
        async with atomic(db):
            payout = await _lock_payout(db, payout_id)
            if payout.status != PayoutStatus.PENDING:
                raise BusinessError("Can only cancel pending payouts")

            payout.items.clear()
            payout.status = PayoutStatus.FAILED
            payout.notes = reason
            await db.flush()

        logger.info("Payout cancelled", payout_number=payout.payout_number, vendor_id=payout.vendor_id, reason=reason)
        return payout

    async def pending_payout_amount(self, db: AsyncSession, vendor: Vendor) -> Decimal:
        items = await get_unpaid_out_items(db, vendor.id)
        return sum((item.vendor_earnings for item in items), Decimal("0"))

    async def payout_history(self, db: AsyncSession, vendor: Vendor, limit: int = 10) -> List[VendorPayout]:
        return await get_payouts_for_vendor(db, vendor.id, limit)

    async def payout_statistics(self, db: AsyncSession, start: datetime, end: datetime) -> dict:
        result = await db.execute(
            select(VendorPayout.status, func.count(VendorPayout.id), func.coalesce(func.sum(VendorPayout.amount), 0))
            .where(VendorPayout.created_at >= start, VendorPayout.created_at <= end)
            .group_by(VendorPayout.status)
        )
        counts = {status: 0 for status in PayoutStatus}
        total_amount = Decimal("0")
        for status, count, amount in result.all():
            counts[PayoutStatus(status)] = count
            total_amount += Decimal(str(amount))

        largest = await db.execute(
            select(func.max(VendorPayout.amount)).where(
                VendorPayout.created_at >= start, VendorPayout.created_at <= end
            )
        )
        total = sum(counts.values())
        return {
            "total_payouts": total,
            "total_amount": total_amount,
            "completed": counts[PayoutStatus.COMPLETED],
            "pending": counts[PayoutStatus.PENDING],
            "processing": counts[PayoutStatus.PROCESSING],
            "failed": counts[PayoutStatus.FAILED],
            "average_payout": (total_amount / total).quantize(Decimal("0.01")) if total else Decimal("0"),
            "largest_payout": largest.scalar() or Decimal("0"),
        }


async def _lock_payout(db: AsyncSession, payout_id: int) -> VendorPayout:
    payout = await get_payout_by_id(db, payout_id, for_update=True)
    if payout is None:
        raise NotFoundError(f"Payout {payout_id} not found")
    return payout
