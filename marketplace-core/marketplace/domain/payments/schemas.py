# marketplace/domain/payments/schemas.py
from pydantic import BaseModel
from typing import Optional

from marketplace.db.models.orders import OrderStatus
from marketplace.db.models.payments import PaymentStatus


class PaymentSessionOut(BaseModel):
    order_number: str
    payment_token: str
    redirect_url: Optional[str] = None


class WebhookAck(BaseModel):
    status: str
    message: str


class ReconciliationOut(BaseModel):
    order_number: str
    message: str
    order_status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
