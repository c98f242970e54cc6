"""Weekly vendor payout run.

    python -m marketplace.jobs.process_payouts
"""
import asyncio
import sys

import structlog

from marketplace.core.config import settings
from marketplace.core.logging import configure_logging
from marketplace.db.base import AsyncSessionLocal, engine
from marketplace.domain.payouts.service import PayoutRunReport, PayoutService

logger = structlog.get_logger(__name__)


async def run(service: PayoutService) -> PayoutRunReport:
    async with AsyncSessionLocal() as db:
        return await service.run_scheduled(db)


async def main() -> int:
    config = settings.marketplace()
    service = PayoutService(config.minimum_payout, config.payout_number_prefix)
    try:
        report = await run(service)
    except Exception:
        logger.exception("Payout run failed")
        return 1
    finally:
        await engine.dispose()

    logger.info(
        "Payout run complete",
        payouts_created=report.processed,
        failed=report.failed,
        total_amount=str(report.total_amount),
    )
    return 0


if __name__ == "__main__":
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    sys.exit(asyncio.run(main()))
