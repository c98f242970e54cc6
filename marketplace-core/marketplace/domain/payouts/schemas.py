# marketplace/domain/payouts/schemas.py
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel
from typing import List, Optional

from marketplace.db.models.payouts import PayoutStatus


class ProcessPayout(BaseModel):
    reference_number: Optional[str] = None


class CancelPayout(BaseModel):
    reason: str


class PayoutItemOut(BaseModel):
    id: int
    order_item_id: int
    amount: Decimal

    class Config:
        from_attributes = True


class PayoutOut(BaseModel):
    id: int
    vendor_id: int
    payout_number: str
    amount: Decimal
    status: PayoutStatus
    method: str
    bank_details: Optional[dict]
    reference_number: Optional[str]
    notes: Optional[str]
    processed_at: Optional[datetime]
    created_at: datetime
    items: List[PayoutItemOut]

    class Config:
        from_attributes = True


class PayoutSummaryOut(BaseModel):
    vendor_id: int
    payout_id: int
    payout_number: str
    amount: Decimal

    class Config:
        from_attributes = True


class PayoutRunOut(BaseModel):
    processed: int
    failed: int
    total_amount: Decimal
    payouts: List[PayoutSummaryOut]

    class Config:
        from_attributes = True


class VendorPayoutsOut(BaseModel):
    vendor_id: int
    balance: Decimal
    pending_payout_amount: Decimal
    payouts: List[PayoutOut]
