"""
Background scheduler for periodic catalog maintenance.

Uses APScheduler's asyncio scheduler so jobs run on the application's event
loop, next to the enrichment worker they poke.
"""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from novelly.core.config import settings
from novelly.services.enrichment_worker import EnrichmentWorker

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def enrichment_drain_job(worker: EnrichmentWorker) -> None:
    """
    Scheduled job: ask the worker to drain the enrichment queue.

    Books queued during quiet periods (no hydration running) still get upgraded.
    """
    if worker.catalog.pending_enrichment:
        worker.trigger()


def start_scheduler(worker: EnrichmentWorker) -> None:
    """
    Start the scheduler with the enrichment job.
    Call this from the FastAPI startup event, inside the running loop.
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return

    logger.info("Starting background scheduler")
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        enrichment_drain_job,
        trigger=IntervalTrigger(minutes=settings.ENRICHMENT_INTERVAL_MINUTES),
        args=[worker],
        id='catalog_enrichment_drain',
        name='Drain catalog enrichment queue',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(f"Background scheduler started (enrichment every {settings.ENRICHMENT_INTERVAL_MINUTES} min)")


def stop_scheduler() -> None:
    """
    Stop the scheduler.
    Call this from the FastAPI shutdown event.
    """
    global scheduler

    if scheduler is not None:
        logger.info("Stopping background scheduler")
        scheduler.shutdown(wait=False)
        scheduler = None
