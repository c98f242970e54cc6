from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from marketplace.db.base import Base


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    commission_rate = Column(Numeric(6, 4), nullable=True)


class Product(Base):
    __tablename__ = "products"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)

    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    vendor = relationship("Vendor", lazy="joined", innerjoin=True)
    category = relationship("Category", lazy="joined")


class Sku(Base):
    """A purchasable variant of a product with its own price and stock.

    ``stock`` is the number of units the vendor owns, ``reserved_stock`` the
    units held against unpaid orders. The stock columns are only written by
    ``marketplace.domain.inventory.ledger`` while the row is locked.
    """

    __tablename__ = "skus"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    sku_code = Column(String, nullable=False, unique=True)
    price = Column(Numeric(18, 2), nullable=False)

    stock = Column(Integer, nullable=False, default=0)
    reserved_stock = Column(Integer, nullable=False, default=0)
    sold_count = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=5)

    weight = Column(Numeric(10, 2), nullable=True)  # grams
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    product = relationship("Product", lazy="joined", innerjoin=True)

    @property
    def available_stock(self) -> int:
        return max(0, self.stock - self.reserved_stock)

    def has_stock(self, quantity: int = 1) -> bool:
        return self.stock - self.reserved_stock >= quantity

    @property
    def is_low_stock(self) -> bool:
        return self.available_stock <= self.low_stock_threshold

    @property
    def vendor_id(self) -> int:
        return self.product.vendor_id
