"""Expired cart cleanup.

    python -m marketplace.jobs.purge_carts
"""
import asyncio
import sys

import structlog

from marketplace.core.config import settings
from marketplace.core.logging import configure_logging
from marketplace.db.base import AsyncSessionLocal, engine
from marketplace.domain.cart.service import purge_expired_carts

logger = structlog.get_logger(__name__)


async def run(session_factory=AsyncSessionLocal) -> int:
    async with session_factory() as db:
        return await purge_expired_carts(db)


async def main() -> int:
    try:
        purged = await run()
    except Exception:
        logger.exception("Cart purge failed")
        return 1
    finally:
        await engine.dispose()

    logger.info("Cart purge complete", carts_purged=purged)
    return 0


if __name__ == "__main__":
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    sys.exit(asyncio.run(main()))
