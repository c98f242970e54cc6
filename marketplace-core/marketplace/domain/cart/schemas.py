# marketplace/domain/cart/schemas.py
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List, Optional


class CartOpen(BaseModel):
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class AddCartItem(BaseModel):
    sku_id: int
    quantity: int = Field(default=1, ge=1)


class UpdateCartItem(BaseModel):
    quantity: int


class MergeCart(BaseModel):
    guest_session_id: str
    user_id: str


class CartLineOut(BaseModel):
    id: int
    sku_id: int
    product_name: str
    sku_code: str
    price: Decimal
    quantity: int
    subtotal: Decimal


class VendorGroupOut(BaseModel):
    vendor_id: int
    vendor_name: str
    subtotal: Decimal
    weight: Decimal
    items: List[CartLineOut]


class CartOut(BaseModel):
    cart_id: int
    subtotal: Decimal
    total_items: int
    total_weight: Decimal
    vendors: List[VendorGroupOut]


class CartIssueOut(BaseModel):
    sku_id: int
    product_name: str
    message: str


class CartValidationOut(BaseModel):
    valid: bool
    issues: List[CartIssueOut]
