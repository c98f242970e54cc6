import enum
from sqlalchemy import Column, Enum, ForeignKey, Index, Integer, String, DateTime, Numeric, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from marketplace.db.base import Base, enum_values


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Order(Base):
    """Immutable snapshot of a purchase across one or more vendors.

    An order records its monetary totals (subtotal, shipping, VAT and
    marketplace withholding, total) and a shipping address snapshot at the
    time of checkout. After creation only ``status`` and its timestamps
    change, and every change is appended to ``status_history``.
    """

    __tablename__ = "orders"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(50), nullable=False, unique=True)
    user_id = Column(String, nullable=True, index=True)
    customer_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)

    status = Column(
        Enum(OrderStatus, name="order_status_enum", values_callable=enum_values),
        nullable=False,
        default=OrderStatus.PENDING,
    )

    subtotal = Column(Numeric(18, 2), nullable=False, default=0)
    shipping_cost = Column(Numeric(18, 2), nullable=False, default=0)
    vat_amount = Column(Numeric(18, 2), nullable=False, default=0)
    marketplace_withholding = Column(Numeric(18, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(18, 2), nullable=False, default=0)
    total = Column(Numeric(18, 2), nullable=False, default=0)
    currency = Column(String, nullable=False, default="IDR")

    shipping_name = Column(String, nullable=False)
    shipping_phone = Column(String, nullable=False)
    shipping_address = Column(Text, nullable=False)
    shipping_city = Column(String, nullable=False)
    shipping_province = Column(String, nullable=False)
    shipping_postal_code = Column(String, nullable=False)

    notes = Column(Text, nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    status_history = relationship(
        "OrderStatusHistory",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
    )
    payment = relationship(
        "Payment",
        back_populates="order",
        lazy="selectin",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_orders_status_created", "status", "created_at"),
    )


class OrderStatusHistory(Base):
    """Audit trail entry written in the same transaction as the transition."""

    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, nullable=False)
    notes = Column(Text, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
