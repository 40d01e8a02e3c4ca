"""
Background worker that drains the catalog's Tier 3 enrichment queue.

Callers never await enrichment. They call trigger(), which drops a drain
request into a bounded queue; one long-lived task consumes the requests and
runs CatalogService.process_enrichment_queue sequentially. A request that
arrives while another is still waiting is coalesced into it.
"""
import asyncio
import logging
from contextlib import suppress
from typing import Optional

from novelly.core.config import settings
from novelly.services.catalog_service import CatalogService

logger = logging.getLogger(__name__)


class EnrichmentWorker:
    def __init__(self, catalog: CatalogService, max_items: Optional[int] = None, queue_size: int = 1):
        self.catalog = catalog
        self.max_items = max_items or settings.ENRICHMENT_MAX_ITEMS
        self._queue_size = queue_size
        self._requests: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None

        self.runs_completed = 0
        self.runs_failed = 0
        self.last_enriched = 0
        self.last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Launch the consumer task on the running loop."""
        if self.is_running:
            return
        self._requests = asyncio.Queue(maxsize=self._queue_size)
        self._task = asyncio.create_task(self._run(), name="catalog-enrichment")
        logger.info("[Enrichment] Worker started")

    def trigger(self, max_items: Optional[int] = None) -> bool:
        """
        Ask for a drain of up to max_items queued keys. Never blocks.

        Returns False when the worker is not running or a drain is already pending.
        """
        if not self.is_running or self._requests is None:
            logger.debug("[Enrichment] Worker not running; trigger ignored")
            return False
        try:
            self._requests.put_nowait(max_items or self.max_items)
        except asyncio.QueueFull:
            logger.debug("[Enrichment] Drain already pending; trigger coalesced")
            return False
        return True

    async def wait_idle(self) -> None:
        """Wait until every accepted drain request has been processed."""
        if self._requests is not None:
            await self._requests.join()

    async def stop(self) -> None:
        """Cancel the consumer task. Pending drain requests are discarded."""
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self._requests = None
        logger.info(
            "[Enrichment] Worker stopped (runs_completed=%d, runs_failed=%d)",
            self.runs_completed, self.runs_failed,
        )

    async def _run(self) -> None:
        while True:
            max_items = await self._requests.get()
            try:
                self.last_enriched = await self.catalog.process_enrichment_queue(max_items)
                self.runs_completed += 1
                if self.last_enriched:
                    logger.info("[Enrichment] Upgraded %d entries to Tier 3", self.last_enriched)
            except Exception as e:
                self.runs_failed += 1
                self.last_error = str(e)
                logger.exception(f"[Enrichment] Drain failed: {e}")
            finally:
                self._requests.task_done()
