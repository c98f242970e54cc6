# marketplace/domain/orders/schemas.py
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List, Optional

from marketplace.db.models.order_items import OrderItemStatus
from marketplace.db.models.orders import OrderStatus


class ShippingAddress(BaseModel):
    recipient_name: str
    phone: str
    address_line: str
    city: str
    province: str
    postal_code: str


class ShippingSelection(BaseModel):
    vendor_id: int
    courier_name: Optional[str] = None
    service: Optional[str] = None
    cost: Decimal = Field(default=Decimal("0"), ge=0)


class CheckoutRequest(BaseModel):
    cart_id: int
    address: ShippingAddress
    shipping_options: List[ShippingSelection] = []
    user_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None


class StatusChange(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class StatusHistoryOut(BaseModel):
    status: str
    notes: Optional[str]
    occurred_at: datetime

    class Config:
        from_attributes = True


class OrderItemOut(BaseModel):
    id: int
    vendor_id: int
    sku_id: int
    product_name: str
    sku_code: str
    price: Decimal
    quantity: int
    subtotal: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    vendor_earnings: Decimal
    vat_amount: Decimal
    withholding_amount: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    courier_name: Optional[str]
    courier_service: Optional[str]
    tracking_number: Optional[str]
    status: OrderItemStatus
    shipped_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: int
    order_number: str
    status: OrderStatus
    subtotal: Decimal
    shipping_cost: Decimal
    vat_amount: Decimal
    marketplace_withholding: Decimal
    tax_amount: Decimal
    total: Decimal
    paid_at: Optional[datetime]
    items: List[OrderItemOut]
    status_history: List[StatusHistoryOut]

    class Config:
        from_attributes = True


class CheckoutOut(BaseModel):
    order: OrderOut
    payment_token: Optional[str] = None
    redirect_url: Optional[str] = None
    payment_error: Optional[str] = None


class ItemStatusChange(BaseModel):
    status: OrderItemStatus
    tracking_number: Optional[str] = None
    courier_name: Optional[str] = None
