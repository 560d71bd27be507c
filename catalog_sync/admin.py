"""
Admin facade: trigger syncs, report status and history, pause/resume.

Used by the HTTP routes and the scheduler. A trigger checks for an active
job of the same scope, records a pending sync job row and enqueues the job
with that row's id, so a second trigger in quick succession sees the first
one as active.
"""

from typing import Iterable, Optional
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.exceptions import SyncAlreadyInProgressError
from models.base import JobType, JobStatus, JobPriority
from schemas.api import (
    OperationStatusResponse,
    StuckJobsCleanupResponse,
    SyncHistoryResponse,
    SyncJobSummary,
    SyncStatusResponse,
    TriggerSyncResponse,
)
from catalog_sync.queue import QueueManager, QueueJob
from catalog_sync.repositories import CatalogMetadataRepository, SyncJobRepository

logger = logging.getLogger(__name__)


class SyncAdminService:
    """Entry point for operator-initiated sync operations"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        queue_manager: QueueManager,
        default_provider: Optional[str] = None,
        providers: Optional[Iterable[str]] = None,
    ):
        self.session_factory = session_factory
        self.queue_manager = queue_manager
        self.default_provider = default_provider or settings.DEFAULT_PROVIDER
        self.providers = list(providers or settings.ENABLED_PROVIDERS)

    async def _record_pending(
        self,
        job_type: JobType,
        conflict_message: str,
        provider: str,
        priority: JobPriority,
        bundle_group: Optional[str] = None,
        country_id: Optional[str] = None,
        triggered_by: str = "manual",
    ) -> str:
        async with self.session_factory() as session:
            repo = SyncJobRepository(session)
            active = await repo.get_active_job_details(
                job_type, provider=provider, bundle_group=bundle_group, country_id=country_id
            )
            if active is not None:
                raise SyncAlreadyInProgressError(
                    conflict_message,
                    context={
                        "job_id": active.id,
                        "job_type": job_type.value,
                        "provider": provider,
                        "status": active.status.value,
                    }
                )

            job = await repo.create_job(
                job_type,
                provider=provider,
                priority=priority,
                bundle_group=bundle_group,
                country_id=country_id,
                metadata={"triggered_by": triggered_by},
            )
            return job.id

    async def _link_queue_job(self, job_id: str, queue_job: QueueJob) -> None:
        async with self.session_factory() as session:
            await SyncJobRepository(session).set_queue_job_id(job_id, queue_job.id)

    async def _cancel_unqueued(self, job_id: str, error: Exception) -> None:
        async with self.session_factory() as session:
            await SyncJobRepository(session).cancel_job(job_id, f"Enqueue failed: {error}")

    async def trigger_full_sync(self, provider: Optional[str] = None, triggered_by: str = "manual") -> TriggerSyncResponse:
        provider = (provider or self.default_provider).lower()
        job_id = await self._record_pending(
            JobType.FULL_SYNC,
            "A full sync is already in progress",
            provider,
            JobPriority.NORMAL if triggered_by == "scheduled" else JobPriority.HIGH,
            triggered_by=triggered_by,
        )

        try:
            queue_job = await self.queue_manager.add_full_sync_job(
                triggered_by=triggered_by, provider=provider, sync_job_id=job_id
            )
        except Exception as e:
            await self._cancel_unqueued(job_id, e)
            raise
        await self._link_queue_job(job_id, queue_job)

        logger.info(f"Full sync for {provider} queued (job {job_id}, queue job {queue_job.id}, by {triggered_by})")
        return TriggerSyncResponse(
            job_id=job_id,
            priority=queue_job.priority,
            queue_job_id=queue_job.id,
            message=f"Full sync for {provider} queued",
        )

    async def trigger_group_sync(self, bundle_group: str, provider: str = "esimgo") -> TriggerSyncResponse:
        job_id = await self._record_pending(
            JobType.GROUP_SYNC,
            f"A sync for bundle group {bundle_group} is already in progress",
            provider,
            JobPriority.NORMAL,
            bundle_group=bundle_group,
        )

        try:
            queue_job = await self.queue_manager.add_group_sync_job(
                bundle_group, provider=provider, sync_job_id=job_id
            )
        except Exception as e:
            await self._cancel_unqueued(job_id, e)
            raise
        await self._link_queue_job(job_id, queue_job)

        return TriggerSyncResponse(
            job_id=job_id,
            priority=queue_job.priority,
            queue_job_id=queue_job.id,
            message=f"Group sync for {bundle_group} queued",
        )

    async def trigger_country_sync(self, country_id: str, provider: Optional[str] = None) -> TriggerSyncResponse:
        provider = (provider or self.default_provider).lower()
        country_id = country_id.strip().upper()
        job_id = await self._record_pending(
            JobType.COUNTRY_SYNC,
            f"A sync for country {country_id} is already in progress",
            provider,
            JobPriority.NORMAL,
            country_id=country_id,
        )

        try:
            queue_job = await self.queue_manager.add_country_sync_job(
                country_id, provider=provider, sync_job_id=job_id
            )
        except Exception as e:
            await self._cancel_unqueued(job_id, e)
            raise
        await self._link_queue_job(job_id, queue_job)

        return TriggerSyncResponse(
            job_id=job_id,
            priority=queue_job.priority,
            queue_job_id=queue_job.id,
            message=f"Country sync for {country_id} queued",
        )

    async def get_sync_status(self) -> SyncStatusResponse:
        queue_stats = await self.queue_manager.get_queue_stats()

        async with self.session_factory() as session:
            metadata_repo = CatalogMetadataRepository(session, settings.SYNC_DUE_HOURS)
            sync_stats = [await metadata_repo.get_sync_stats(provider) for provider in self.providers]
            active = await SyncJobRepository(session).get_active_jobs()

        return SyncStatusResponse(
            queue=queue_stats,
            sync=sync_stats,
            active_jobs=[SyncJobSummary.model_validate(job) for job in active],
        )

    async def get_sync_history(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SyncHistoryResponse:
        async with self.session_factory() as session:
            jobs, total = await SyncJobRepository(session).get_job_history(status, job_type, limit, offset)

        return SyncHistoryResponse(
            jobs=[SyncJobSummary.model_validate(job) for job in jobs],
            total=total,
            limit=limit,
            offset=offset,
        )

    async def pause_sync_operations(self) -> OperationStatusResponse:
        await self.queue_manager.pause()
        logger.warning("Sync operations paused")
        return OperationStatusResponse(status="paused", message="Sync queue paused")

    async def resume_sync_operations(self) -> OperationStatusResponse:
        await self.queue_manager.resume()
        logger.info("Sync operations resumed")
        return OperationStatusResponse(status="resumed", message="Sync queue resumed")

    async def cancel_orphaned_pending_jobs(self) -> int:
        """
        Cancel stale pending rows whose queue job is gone or already finished.

        Such a row would otherwise count as an active job forever and make
        every later trigger of the same scope conflict.
        """
        queue = self.queue_manager.queue
        cancelled = 0
        async with self.session_factory() as session:
            repo = SyncJobRepository(session)
            for job in await repo.get_stale_pending_jobs(settings.STUCK_JOB_THRESHOLD_MINUTES):
                queue_job = await queue.get_job(job.queue_job_id) if job.queue_job_id else None
                if queue_job is not None and queue_job.state not in ("completed", "failed"):
                    continue
                reason = f"Cancelled: queue job {job.queue_job_id or '-'} is no longer queued"
                if await repo.cancel_job(job.id, reason):
                    cancelled += 1

        if cancelled:
            logger.warning(f"Cancelled {cancelled} pending sync jobs without a live queue job")
        return cancelled

    async def force_cleanup_stuck_jobs(self) -> StuckJobsCleanupResponse:
        async with self.session_factory() as session:
            cancelled = await SyncJobRepository(session).cancel_stuck_jobs(settings.STUCK_JOB_THRESHOLD_MINUTES)
        cancelled += await self.cancel_orphaned_pending_jobs()
        return StuckJobsCleanupResponse(
            cancelled_count=cancelled,
            message=f"Cancelled {cancelled} stuck jobs",
        )
