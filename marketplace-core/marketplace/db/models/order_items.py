import enum
from sqlalchemy import Column, Enum, ForeignKey, Index, Integer, String, DateTime, Numeric
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from marketplace.db.base import Base, enum_values


class OrderItemStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderItem(Base):
    """One (order, vendor, sku) line of an order.

    Captures the product name, SKU code, pricing, commission, tax and
    shipping as they were at checkout so that settlement, payouts and tax
    reporting never depend on the mutable catalog or vendor rates. Each item
    follows its own fulfilment status and waybill because vendors ship
    independently.
    """

    __tablename__ = "order_items"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False)
    sku_id = Column(Integer, ForeignKey("skus.id"), nullable=False)

    product_name = Column(String, nullable=False)
    sku_code = Column(String, nullable=False)

    price = Column(Numeric(18, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    subtotal = Column(Numeric(18, 2), nullable=False)

    commission_rate = Column(Numeric(6, 4), nullable=False)
    commission_amount = Column(Numeric(18, 2), nullable=False)
    vendor_earnings = Column(Numeric(18, 2), nullable=False)

    vat_amount = Column(Numeric(18, 2), nullable=False, default=0)
    withholding_amount = Column(Numeric(18, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(18, 2), nullable=False, default=0)

    shipping_cost = Column(Numeric(18, 2), nullable=False, default=0)
    courier_name = Column(String, nullable=True)
    courier_service = Column(String, nullable=True)
    tracking_number = Column(String, nullable=True)

    status = Column(
        Enum(OrderItemStatus, name="order_item_status_enum", values_callable=enum_values),
        nullable=False,
        default=OrderItemStatus.PENDING,
    )

    settled_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        Index("ix_order_items_vendor_status", "vendor_id", "status"),
        Index("ix_order_items_order_sku", "order_id", "sku_id", unique=True),
    )
