"""
Sync job persistence: lifecycle transitions, active-job checks, history
"""

from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime, timedelta
from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from models.base import JobType, JobStatus, JobPriority, ACTIVE_JOB_STATUSES, TERMINAL_JOB_STATUSES
from models.sync_job import CatalogSyncJob

logger = logging.getLogger(__name__)


class SyncJobRepository:
    """
    CRUD and lifecycle operations for catalog_sync_jobs.

    Terminal transitions (complete/fail/cancel) are guarded: they only
    touch rows that are still pending or running, so a late result for a
    job already cancelled by the stuck-job sweep is discarded.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def create_job(
        self,
        job_type: JobType,
        provider: Optional[str] = None,
        priority: JobPriority = JobPriority.NORMAL,
        bundle_group: Optional[str] = None,
        country_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        queue_job_id: Optional[str] = None,
    ) -> CatalogSyncJob:
        job = CatalogSyncJob(
            job_type=job_type,
            status=JobStatus.PENDING,
            priority=priority,
            provider=provider,
            bundle_group=bundle_group,
            country_id=country_id,
            job_metadata=metadata or {},
            queue_job_id=queue_job_id,
        )
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)

        logger.info(f"Created sync job {job.id} ({job_type.value}, provider={provider})")
        return job

    async def get_job(self, job_id: str) -> Optional[CatalogSyncJob]:
        result = await self.db.execute(
            select(CatalogSyncJob)
            .where(CatalogSyncJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def set_queue_job_id(self, job_id: str, queue_job_id: str) -> None:
        await self.db.execute(
            update(CatalogSyncJob)
            .where(CatalogSyncJob.id == job_id)
            .values(queue_job_id=queue_job_id, updated_at=datetime.utcnow())
        )
        await self.db.commit()

    async def start_job(self, job_id: str) -> bool:
        """pending -> running"""
        now = datetime.utcnow()
        result = await self.db.execute(
            update(CatalogSyncJob)
            .where(CatalogSyncJob.id == job_id, CatalogSyncJob.status == JobStatus.PENDING)
            .values(status=JobStatus.RUNNING, started_at=now, updated_at=now)
        )
        await self.db.commit()
        started = (result.rowcount or 0) > 0
        if not started:
            logger.warning(f"Sync job {job_id} could not be started (not pending)")
        return started

    async def update_job_progress(
        self,
        job_id: str,
        processed: int,
        added: int,
        updated: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        job = await self.get_job(job_id)
        if job is None or job.status not in ACTIVE_JOB_STATUSES:
            return

        job.bundles_processed = processed
        job.bundles_added = added
        job.bundles_updated = updated
        if metadata:
            job.job_metadata = {**(job.job_metadata or {}), **metadata}
        job.updated_at = datetime.utcnow()
        await self.db.commit()

    async def _finish(self, job_id: str, status: JobStatus, **values) -> bool:
        now = datetime.utcnow()
        result = await self.db.execute(
            update(CatalogSyncJob)
            .where(CatalogSyncJob.id == job_id, CatalogSyncJob.status.in_(ACTIVE_JOB_STATUSES))
            .values(status=status, completed_at=now, updated_at=now, **values)
        )
        await self.db.commit()
        return (result.rowcount or 0) > 0

    async def complete_job(
        self,
        job_id: str,
        processed: int,
        added: int,
        updated: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        values = dict(bundles_processed=processed, bundles_added=added, bundles_updated=updated)
        if metadata:
            job = await self.get_job(job_id)
            values["job_metadata"] = {**((job.job_metadata if job else None) or {}), **metadata}

        done = await self._finish(job_id, JobStatus.COMPLETED, **values)
        if done:
            logger.info(f"Sync job {job_id} completed: {processed} processed, {added} added, {updated} updated")
        else:
            logger.warning(f"Discarded completion for sync job {job_id} (no longer active)")
        return done

    async def fail_job(self, job_id: str, error: str) -> bool:
        done = await self._finish(job_id, JobStatus.FAILED, error_message=error)
        if done:
            logger.error(f"Sync job {job_id} failed: {error}")
        else:
            logger.warning(f"Discarded failure for sync job {job_id} (no longer active)")
        return done

    async def cancel_job(self, job_id: str, reason: str) -> bool:
        done = await self._finish(job_id, JobStatus.CANCELLED, error_message=reason)
        if done:
            logger.info(f"Sync job {job_id} cancelled: {reason}")
        return done

    # ------------------------------------------------------------------
    # Active jobs
    # ------------------------------------------------------------------

    def _scope_filters(
        self,
        job_type: JobType,
        provider: Optional[str] = None,
        bundle_group: Optional[str] = None,
        country_id: Optional[str] = None,
    ) -> list:
        filters = [CatalogSyncJob.job_type == job_type, CatalogSyncJob.status.in_(ACTIVE_JOB_STATUSES)]
        if provider is not None:
            filters.append(CatalogSyncJob.provider == provider)
        if bundle_group is not None:
            filters.append(CatalogSyncJob.bundle_group == bundle_group)
        if country_id is not None:
            filters.append(CatalogSyncJob.country_id == country_id)
        return filters

    async def get_active_jobs(self) -> List[CatalogSyncJob]:
        result = await self.db.execute(
            select(CatalogSyncJob)
            .where(CatalogSyncJob.status.in_(ACTIVE_JOB_STATUSES))
            .order_by(CatalogSyncJob.created_at.desc())
        )
        return list(result.scalars().all())

    async def has_active_job(
        self,
        job_type: JobType,
        provider: Optional[str] = None,
        bundle_group: Optional[str] = None,
        country_id: Optional[str] = None,
    ) -> bool:
        result = await self.db.execute(
            select(func.count(CatalogSyncJob.id)).where(
                *self._scope_filters(job_type, provider, bundle_group, country_id)
            )
        )
        return (result.scalar() or 0) > 0

    async def get_active_job_details(
        self,
        job_type: JobType,
        provider: Optional[str] = None,
        bundle_group: Optional[str] = None,
        country_id: Optional[str] = None,
    ) -> Optional[CatalogSyncJob]:
        result = await self.db.execute(
            select(CatalogSyncJob)
            .where(*self._scope_filters(job_type, provider, bundle_group, country_id))
            .order_by(CatalogSyncJob.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Stuck / pending cleanup
    # ------------------------------------------------------------------

    async def get_stuck_jobs(self, threshold_minutes: int = 30) -> List[CatalogSyncJob]:
        cutoff = datetime.utcnow() - timedelta(minutes=threshold_minutes)
        result = await self.db.execute(
            select(CatalogSyncJob).where(
                CatalogSyncJob.status == JobStatus.RUNNING,
                CatalogSyncJob.started_at < cutoff,
            )
        )
        return list(result.scalars().all())

    async def cancel_stuck_jobs(self, threshold_minutes: int = 30) -> int:
        """Cancel running jobs whose started_at is older than the threshold"""
        now = datetime.utcnow()
        cutoff = now - timedelta(minutes=threshold_minutes)
        result = await self.db.execute(
            update(CatalogSyncJob)
            .where(CatalogSyncJob.status == JobStatus.RUNNING, CatalogSyncJob.started_at < cutoff)
            .values(
                status=JobStatus.CANCELLED,
                error_message=f"Cancelled: running for more than {threshold_minutes} minutes",
                completed_at=now,
                updated_at=now,
            )
        )
        await self.db.commit()
        count = result.rowcount or 0
        if count:
            logger.warning(f"Cancelled {count} stuck sync jobs (threshold {threshold_minutes} min)")
        return count

    async def get_stale_pending_jobs(self, threshold_minutes: int = 30) -> List[CatalogSyncJob]:
        """Pending jobs created more than threshold_minutes ago"""
        cutoff = datetime.utcnow() - timedelta(minutes=threshold_minutes)
        result = await self.db.execute(
            select(CatalogSyncJob)
            .where(CatalogSyncJob.status == JobStatus.PENDING, CatalogSyncJob.created_at < cutoff)
            .order_by(CatalogSyncJob.created_at)
        )
        return list(result.scalars().all())

    async def cancel_pending_jobs(
        self,
        job_type: Optional[JobType] = None,
        provider: Optional[str] = None,
        reason: str = "Cancelled",
    ) -> int:
        now = datetime.utcnow()
        stmt = update(CatalogSyncJob).where(CatalogSyncJob.status == JobStatus.PENDING)
        if job_type is not None:
            stmt = stmt.where(CatalogSyncJob.job_type == job_type)
        if provider is not None:
            stmt = stmt.where(CatalogSyncJob.provider == provider)
        result = await self.db.execute(
            stmt.values(status=JobStatus.CANCELLED, error_message=reason, completed_at=now, updated_at=now)
        )
        await self.db.commit()
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # History / retention
    # ------------------------------------------------------------------

    async def get_job_history(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[CatalogSyncJob], int]:
        filters = []
        if status is not None:
            filters.append(CatalogSyncJob.status == status)
        if job_type is not None:
            filters.append(CatalogSyncJob.job_type == job_type)

        total = (
            await self.db.execute(select(func.count(CatalogSyncJob.id)).where(*filters))
        ).scalar() or 0

        result = await self.db.execute(
            select(CatalogSyncJob)
            .where(*filters)
            .order_by(CatalogSyncJob.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    async def cleanup_old_jobs(self, days: int = 30) -> int:
        """Delete terminal jobs completed more than `days` ago"""
        cutoff = datetime.utcnow() - timedelta(days=days)
        result = await self.db.execute(
            delete(CatalogSyncJob).where(
                CatalogSyncJob.status.in_(TERMINAL_JOB_STATUSES),
                CatalogSyncJob.completed_at < cutoff,
            )
        )
        await self.db.commit()
        count = result.rowcount or 0
        if count:
            logger.info(f"Deleted {count} sync jobs older than {days} days")
        return count
