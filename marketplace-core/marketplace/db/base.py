from contextlib import asynccontextmanager

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.ext.asyncio.session import AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from marketplace.core.config import settings

DB_URL = settings.DB_URL

engine = create_async_engine(DB_URL, future=True, echo=settings.DB_ECHO)
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def atomic(db: AsyncSession):
    """Commit-or-rollback scope for a unit of work.

    Scopes nest: only the outermost one commits or rolls back, so workflow
    steps called from a larger operation join its transaction.
    """
    depth = db.info.get("atomic_depth", 0)
    db.info["atomic_depth"] = depth + 1
    try:
        yield db
        if depth == 0:
            await db.commit()
    except BaseException:
        if depth == 0:
            await db.rollback()
        raise
    finally:
        db.info["atomic_depth"] = depth


def enum_values(enum_cls):
    """Persist enum members by value rather than by name."""
    return [member.value for member in enum_cls]
