# marketplace/api/v1/routes_payouts.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.deps import get_payout_service
from marketplace.core.errors import NotFoundError
from marketplace.db.base import get_db
from marketplace.db.repositories.vendors import get_vendor_by_id
from marketplace.domain.payouts.schemas import (
    CancelPayout,
    PayoutOut,
    PayoutRunOut,
    ProcessPayout,
    VendorPayoutsOut,
)
from marketplace.domain.payouts.service import PayoutService


router = APIRouter(prefix="/api/v1", tags=["payouts"])


@router.post("/payouts/run", response_model=PayoutRunOut)
async def run_payouts_endpoint(
    db: AsyncSession = Depends(get_db),
    service: PayoutService = Depends(get_payout_service),
):
    return await service.run_scheduled(db)


@router.post("/payouts/{payout_id}/process", response_model=PayoutOut)
async def process_payout_endpoint(
    payout_id: int,
    payload: ProcessPayout,
    db: AsyncSession = Depends(get_db),
    service: PayoutService = Depends(get_payout_service),
):
    return await service.process_payout(db, payout_id, payload.reference_number)


@router.post("/payouts/{payout_id}/cancel", response_model=PayoutOut)
async def cancel_payout_endpoint(
    payout_id: int,
    payload: CancelPayout,
    db: AsyncSession = Depends(get_db),
    service: PayoutService = Depends(get_payout_service),
):
    return await service.cancel_payout(db, payout_id, payload.reason)


@router.get("/vendors/{vendor_id}/payouts", response_model=VendorPayoutsOut)
async def vendor_payouts_endpoint(
    vendor_id: int,
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    service: PayoutService = Depends(get_payout_service),
):
    vendor = await get_vendor_by_id(db, vendor_id)
    if vendor is None:
        raise NotFoundError(f"Vendor {vendor_id} not found")
    return VendorPayoutsOut(
        vendor_id=vendor.id,
        balance=vendor.balance,
        pending_payout_amount=await service.pending_payout_amount(db, vendor),
        payouts=[PayoutOut.model_validate(payout) for payout in await service.payout_history(db, vendor, limit)],
    )
