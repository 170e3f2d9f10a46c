from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from draymaster.core.config import get_settings
from draymaster.core.db import AsyncSessionFactory
from draymaster.services.automation.service import AutomationService
from draymaster.services.outbox import OutboxRelay

logger = logging.getLogger(__name__)
settings = get_settings()

automation_scheduler = AsyncIOScheduler()


async def run_demurrage_reevaluation() -> None:
    """Escalate demurrage status and estimates for every container still out."""
    async with AsyncSessionFactory() as session:
        try:
            result = await AutomationService(session, settings).reevaluate_open_demurrage()
            logger.info(
                "demurrage_reevaluation_cycle",
                extra={
                    "evaluated": result.evaluated,
                    "updated": len(result.updated),
                    "skipped": len(result.skipped),
                },
            )
        except Exception as exc:  # pragma: no cover - logged and retried on the next tick
            logger.exception("Demurrage reevaluation failed", extra={"error": str(exc)})


async def relay_unpublished_outbox() -> None:
    """Dispatch outbox rows left behind by a process that died after commit."""
    async with AsyncSessionFactory() as session:
        try:
            await OutboxRelay(session).relay_pending(older_than_seconds=settings.outbox_relay_delay_seconds)
        except Exception as exc:  # pragma: no cover - logged and retried on the next tick
            logger.exception("Outbox relay failed", extra={"error": str(exc)})


def start_scheduler() -> None:
    if automation_scheduler.running:
        return
    automation_scheduler.add_job(
        run_demurrage_reevaluation,
        "interval",
        minutes=settings.demurrage_reevaluation_interval_minutes,
        id="demurrage-reevaluation",
        max_instances=1,
        coalesce=True,
    )
    automation_scheduler.add_job(
        relay_unpublished_outbox,
        "interval",
        minutes=settings.outbox_relay_interval_minutes,
        id="outbox-relay",
        max_instances=1,
        coalesce=True,
    )
    automation_scheduler.start()
    logger.info(
        "Automation scheduler started",
        extra={"interval_minutes": settings.demurrage_reevaluation_interval_minutes},
    )


def shutdown_scheduler() -> None:
    if automation_scheduler.running:
        automation_scheduler.shutdown(wait=False)
        logger.info("Automation scheduler stopped")
