from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from marketplace.db.base import Base, get_db
from marketplace.db.models import (
    Cart,
    CartItem,
    Category,
    Product,
    Sku,
    Vendor,
    VendorStatus,
)
from marketplace.db.repositories.carts import get_cart_by_id
from marketplace.domain.orders.schemas import ShippingAddress
from marketplace.domain.orders.service import OrderService
from marketplace.domain.payments.gateway import reset_gateway, set_gateway
from marketplace.domain.payments.gateway.fake_adapter import FakeGateway
from marketplace.domain.payouts.service import PayoutService
from marketplace.domain.pricing.commission import CommissionCalculator
from marketplace.domain.pricing.tax import TaxCalculator


@pytest.fixture()
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def serialized_sessions(engine):
    """Sessions on the same database whose transactions take SQLite's write
    lock at BEGIN, so concurrent units of work queue up the way row locks
    make them queue on PostgreSQL."""
    serialized = create_async_engine(engine.url, connect_args={"timeout": 30})

    @event.listens_for(serialized.sync_engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(serialized.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    yield sessionmaker(bind=serialized, class_=AsyncSession, expire_on_commit=False)
    await serialized.dispose()


@pytest.fixture()
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def gateway():
    fake = FakeGateway()
    set_gateway(fake)
    yield fake
    reset_gateway()


@pytest.fixture()
def order_service():
    return OrderService(
        commission=CommissionCalculator(Decimal("0.10")),
        tax=TaxCalculator(Decimal("0.11"), Decimal("0.025")),
        order_number_prefix="MV",
    )


@pytest.fixture()
def payout_service():
    return PayoutService(minimum_payout=Decimal("100000"), payout_number_prefix="PO")


@pytest.fixture()
def address():
    return ShippingAddress(
        recipient_name="Budi Santoso",
        phone="081234567890",
        address_line="Jl. Merdeka No. 10",
        city="Bandung",
        province="Jawa Barat",
        postal_code="40111",
    )


class Factory:
    """Persists catalog and cart fixtures, committing each one."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._seq = count(1)

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        return obj

    async def vendor(self, shop_name=None, commission_rate=None, status=VendorStatus.APPROVED, balance=0):
        n = next(self._seq)
        return await self._save(
            Vendor(
                shop_name=shop_name or f"Shop {n}",
                email=f"shop{n}@example.test",
                status=status,
                commission_rate=commission_rate,
                bank_name="BCA",
                bank_account_number=f"12345{n:04d}",
                bank_account_name=f"Owner {n}",
                balance=Decimal(balance),
                total_earnings=Decimal(balance),
            )
        )

    async def category(self, name="General", commission_rate=None):
        return await self._save(Category(name=name, commission_rate=commission_rate))

    async def sku(self, vendor=None, price="100000", stock=10, category=None, name=None, is_active=True):
        vendor = vendor or await self.vendor()
        n = next(self._seq)
        product = await self._save(
            Product(
                vendor_id=vendor.id,
                category_id=category.id if category is not None else None,
                name=name or f"Product {n}",
                is_active=True,
            )
        )
        sku = await self._save(
            Sku(
                product_id=product.id,
                sku_code=f"SKU-{n:05d}",
                price=Decimal(price),
                stock=stock,
                reserved_stock=0,
                weight=Decimal("500"),
                is_active=is_active,
            )
        )
        return await self.reload(sku)

    async def cart(self, *lines, user_id=None, session_id=None):
        """A cart holding ``(sku, quantity)`` lines."""
        n = next(self._seq)
        cart = await self._save(
            Cart(
                user_id=user_id,
                session_id=session_id or (None if user_id else f"guest-{n}"),
                expires_at=datetime.now(timezone.utc) + timedelta(days=7),
                items=[],
            )
        )
        for sku, quantity in lines:
            self.db.add(CartItem(cart_id=cart.id, sku_id=sku.id, quantity=quantity))
        await self.db.commit()
        return await get_cart_by_id(self.db, cart.id)

    async def reload(self, obj):
        await self.db.refresh(obj)
        return obj


@pytest.fixture()
def make(db):
    return Factory(db)


@pytest.fixture()
async def client(session_factory, gateway):
    from marketplace.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()
