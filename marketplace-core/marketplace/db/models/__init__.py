from marketplace.db.models.vendors import Vendor, VendorStatus
from marketplace.db.models.catalog import Category, Product, Sku
from marketplace.db.models.carts import Cart, CartItem
from marketplace.db.models.orders import Order, OrderStatus, OrderStatusHistory
from marketplace.db.models.order_items import OrderItem, OrderItemStatus
from marketplace.db.models.payments import Payment, PaymentStatus
from marketplace.db.models.payouts import PayoutItem, PayoutStatus, VendorPayout

__all__ = [
    "Cart",
    "CartItem",
    "Category",
    "Order",
    "OrderItem",
    "OrderItemStatus",
    "OrderStatus",
    "OrderStatusHistory",
    "Payment",
    "PaymentStatus",
    "PayoutItem",
    "PayoutStatus",
    "Product",
    "Sku",
    "Vendor",
    "VendorPayout",
    "VendorStatus",
]
