import enum
from sqlalchemy import Column, Enum, ForeignKey, Index, Integer, Numeric, String, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from marketplace.db.base import Base, JSONType, enum_values


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class VendorPayout(Base):
    """A batch transfer of a vendor's settled earnings to their bank account.

    The vendor balance is only debited when the payout is completed; a
    pending or failed payout never changes it.
    """

    __tablename__ = "vendor_payouts"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False)
    payout_number = Column(String(50), nullable=False, unique=True)

    amount = Column(Numeric(18, 2), nullable=False)
    status = Column(
        Enum(PayoutStatus, name="payout_status_enum", values_callable=enum_values),
        nullable=False,
        default=PayoutStatus.PENDING,
    )
    method = Column(String(30), nullable=False, default="bank_transfer")
    bank_details = Column(JSONType, nullable=True)

    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    items = relationship(
        "PayoutItem",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="PayoutItem.id",
    )

    __table_args__ = (
        Index("ix_vendor_payouts_vendor_status", "vendor_id", "status"),
    )


class PayoutItem(Base):
    """Links an order item to the payout that pays out its earnings."""

    __tablename__ = "payout_items"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    vendor_payout_id = Column(Integer, ForeignKey("vendor_payouts.id", ondelete="CASCADE"), nullable=False, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=False, unique=True)
    amount = Column(Numeric(18, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
