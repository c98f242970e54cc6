import enum
from sqlalchemy import Column, Enum, Integer, Numeric, String, DateTime, Text
from sqlalchemy.sql import func

from marketplace.db.base import Base, enum_values


class VendorStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    SUSPENDED = "suspended"


class Vendor(Base):
    """A shop selling on the marketplace.

    ``balance`` holds settled earnings that have not been paid out yet and
    ``total_earnings`` the lifetime credited amount. Both only move through
    commission settlement (credit) and payout completion (debit).
    """

    __tablename__ = "vendors"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=True, index=True)
    shop_name = Column(String, nullable=False)
    email = Column(String, nullable=True)

    status = Column(
        Enum(VendorStatus, name="vendor_status_enum", values_callable=enum_values),
        nullable=False,
        default=VendorStatus.PENDING,
    )
    commission_rate = Column(Numeric(6, 4), nullable=True)

    bank_name = Column(String, nullable=True)
    bank_account_number = Column(String, nullable=True)
    bank_account_name = Column(String, nullable=True)

    balance = Column(Numeric(18, 2), nullable=False, default=0)
    total_earnings = Column(Numeric(18, 2), nullable=False, default=0)

    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    @property
    def is_approved(self) -> bool:
        return self.status == VendorStatus.APPROVED
