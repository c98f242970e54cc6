
import enum
from sqlalchemy import Column, Enum, ForeignKey, Index, Integer, Numeric, String, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from marketplace.db.base import Base, JSONType, enum_values


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    EXPIRED = "expired"


class Payment(Base):
    """Represents the payment attached to an order.

    There is exactly one payment per order. It stores the gateway transaction
    id, the amount, the current payment status and the raw gateway payload
    of the last notification so that reconciliation can be audited.
    """

    __tablename__ = "payments"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, autoincrement=True)

    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)
    transaction_id = Column(String, nullable=True, unique=True)
    payment_method = Column(String(50), nullable=False, default="midtrans")

    amount = Column(Numeric(18, 2), nullable=False)
    status = Column(
        Enum(PaymentStatus, name="payment_status_enum", values_callable=enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
    )

    session_token = Column(String, nullable=True)
    redirect_url = Column(Text, nullable=True)
    gateway_response = Column(JSONType, nullable=True)
    notes = Column(Text, nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    order = relationship("Order", back_populates="payment")

    __table_args__ = (
        Index("ix_payments_status", "status"),
    )
