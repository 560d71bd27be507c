import logging
from datetime import datetime
from functools import partial
from typing import Awaitable, Callable, Mapping, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import Settings, settings as default_settings
from core.exceptions import SyncAlreadyInProgressError
from catalog_sync.admin import SyncAdminService
from catalog_sync.queue import QueueManager
from catalog_sync.repositories import CatalogMetadataRepository
from catalog_sync.service import CatalogSyncService

logger = logging.getLogger(__name__)


class CatalogSyncScheduler:
    """
    Periodic sync housekeeping on an AsyncIOScheduler.

    Jobs:
    - check_sync_due (hourly): queue a scheduled full sync for every
      provider whose catalog is due
    - check_api_health (5 min): probe every provider
    - handle_stuck_jobs (10 min): cancel long-running sync jobs and
      pending jobs whose queue job was lost
    - cleanup_old_jobs (daily): prune sync job rows and queue history
    - log_queue_stats (30 min)

    A failing task is logged and never stops the interval or other tasks;
    per-provider tasks also isolate each provider.
    """

    def __init__(
        self,
        admin: SyncAdminService,
        services: Mapping[str, CatalogSyncService],
        queue_manager: QueueManager,
        session_factory: async_sessionmaker,
        settings: Settings = default_settings,
    ):
        self.admin = admin
        self.services = services
        self.queue_manager = queue_manager
        self.session_factory = session_factory
        self.settings = settings
        self.scheduler = AsyncIOScheduler()

    @property
    def _housekeeper(self) -> Optional[CatalogSyncService]:
        """Service used for provider-agnostic job maintenance"""
        return self.services.get(self.settings.DEFAULT_PROVIDER) or next(iter(self.services.values()), None)

    async def _safe(self, name: str, task: Callable[[], Awaitable]) -> None:
        try:
            await task()
        except Exception as e:
            logger.error(f"Scheduler: {name} failed - {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def check_sync_due(self) -> None:
        for provider in self.services:
            await self._safe(f"sync due check for {provider}", partial(self._trigger_if_due, provider))

    async def _trigger_if_due(self, provider: str) -> None:
        async with self.session_factory() as session:
            due = await CatalogMetadataRepository(session, self.settings.SYNC_DUE_HOURS).is_sync_due(
                provider, self.settings.SYNC_DUE_HOURS
            )
        if not due:
            return

        try:
            response = await self.admin.trigger_full_sync(provider=provider, triggered_by="scheduled")
            logger.info(f"Scheduler: queued scheduled full sync for {provider} (job {response.job_id})")
        except SyncAlreadyInProgressError:
            logger.info(f"Scheduler: full sync for {provider} already in progress")

    async def check_api_health(self) -> None:
        for provider, service in self.services.items():
            await self._safe(f"health check for {provider}", service.check_api_health)

    async def handle_stuck_jobs(self) -> None:
        if self._housekeeper is not None:
            cancelled = await self._housekeeper.handle_stuck_jobs()
            if cancelled:
                logger.warning(f"Scheduler: cancelled {cancelled} stuck sync jobs")
        await self.admin.cancel_orphaned_pending_jobs()

    async def cleanup_old_jobs(self) -> None:
        deleted = await self._housekeeper.cleanup_old_jobs() if self._housekeeper else 0
        cleaned = await self.queue_manager.clean_old_jobs()
        logger.info(
            f"Scheduler: deleted {deleted} old sync jobs, cleaned {cleaned['completed']} completed "
            f"and {cleaned['failed']} failed queue jobs"
        )

    async def log_queue_stats(self) -> None:
        stats = await self.queue_manager.get_queue_stats()
        logger.info(
            f"Queue stats: waiting={stats.waiting} active={stats.active} delayed={stats.delayed} "
            f"completed={stats.completed} failed={stats.failed} paused={stats.paused}"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _add(self, name: str, task: Callable[[], Awaitable], trigger: IntervalTrigger, run_now: bool = False) -> None:
        async def job():
            await self._safe(name, task)

        options = {"next_run_time": datetime.now()} if run_now else {}
        self.scheduler.add_job(
            job,
            trigger=trigger,
            id=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **options
        )

    def start(self):
        """Start the scheduler (must be called from a running event loop)"""
        self._add("check_sync_due", self.check_sync_due, IntervalTrigger(hours=1), run_now=True)
        self._add("check_api_health", self.check_api_health, IntervalTrigger(minutes=5))
        self._add("handle_stuck_jobs", self.handle_stuck_jobs, IntervalTrigger(minutes=10))
        self._add("cleanup_old_jobs", self.cleanup_old_jobs, IntervalTrigger(days=1))
        self._add("log_queue_stats", self.log_queue_stats, IntervalTrigger(minutes=30))
        self.scheduler.start()
        logger.info("Catalog sync scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Catalog sync scheduler stopped")
