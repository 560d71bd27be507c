"""
Unit tests for the sync job repository
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from catalog_sync.repositories import SyncJobRepository
from models.base import JobType, JobStatus, JobPriority
from models.sync_job import CatalogSyncJob


async def backdate(session, job_id: str, **values):
    await session.execute(update(CatalogSyncJob).where(CatalogSyncJob.id == job_id).values(**values))
    await session.commit()


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_create_start_complete(self, db_session):
        repo = SyncJobRepository(db_session)

        job = await repo.create_job(JobType.FULL_SYNC, provider="esimgo", priority=JobPriority.HIGH)
        assert job.status == JobStatus.PENDING
        assert len(job.id) == 36

        assert await repo.start_job(job.id) is True
        await repo.update_job_progress(job.id, 50, 40, 10, metadata={"pages": 1})
        assert await repo.complete_job(job.id, 100, 80, 20, metadata={"rejected": 3}) is True

        job = await repo.get_job(job.id)
        assert job.status == JobStatus.COMPLETED
        assert job.bundles_processed == 100
        assert job.bundles_added == 80
        assert job.bundles_updated == 20
        assert job.job_metadata == {"pages": 1, "rejected": 3}
        assert job.started_at is not None
        assert job.completed_at is not None

    @pytest.mark.asyncio
    async def test_start_requires_pending(self, db_session):
        repo = SyncJobRepository(db_session)
        job = await repo.create_job(JobType.FULL_SYNC, provider="esimgo")

        await repo.start_job(job.id)

        assert await repo.start_job(job.id) is False

    @pytest.mark.asyncio
    async def test_fail_job_records_error(self, db_session):
        repo = SyncJobRepository(db_session)
        job = await repo.create_job(JobType.COUNTRY_SYNC, provider="maya", country_id="FR")
        await repo.start_job(job.id)

        assert await repo.fail_job(job.id, "Provider timeout") is True

        job = await repo.get_job(job.id)
        assert job.status == JobStatus.FAILED
        assert job.error_message == "Provider timeout"

    @pytest.mark.asyncio
    async def test_late_completion_after_cancel_is_discarded(self, db_session):
        repo = SyncJobRepository(db_session)
        job = await repo.create_job(JobType.FULL_SYNC, provider="esimgo")
        await repo.start_job(job.id)
        await repo.cancel_job(job.id, "Cancelled by operator")

        assert await repo.complete_job(job.id, 10, 10, 0) is False
        assert await repo.fail_job(job.id, "late error") is False

        job = await repo.get_job(job.id)
        assert job.status == JobStatus.CANCELLED
        assert job.error_message == "Cancelled by operator"
        assert job.bundles_processed == 0

    @pytest.mark.asyncio
    async def test_set_queue_job_id(self, db_session):
        repo = SyncJobRepository(db_session)
        job = await repo.create_job(JobType.METADATA_SYNC, provider="esimgo")

        await repo.set_queue_job_id(job.id, "42")

        assert (await repo.get_job(job.id)).queue_job_id == "42"


class TestActiveJobs:
    """At most one active job per type and scope"""

    @pytest.mark.asyncio
    async def test_pending_and_running_block_same_scope(self, db_session):
        repo = SyncJobRepository(db_session)
        job = await repo.create_job(JobType.FULL_SYNC, provider="esimgo")

        assert await repo.has_active_job(JobType.FULL_SYNC, provider="esimgo") is True
        await repo.start_job(job.id)
        assert await repo.has_active_job(JobType.FULL_SYNC, provider="esimgo") is True

        await repo.complete_job(job.id, 0, 0, 0)
        assert await repo.has_active_job(JobType.FULL_SYNC, provider="esimgo") is False

    @pytest.mark.asyncio
    async def test_scopes_are_independent(self, db_session):
        repo = SyncJobRepository(db_session)
        await repo.create_job(JobType.FULL_SYNC, provider="esimgo")
        await repo.create_job(JobType.COUNTRY_SYNC, provider="esimgo", country_id="FR")

        assert await repo.has_active_job(JobType.FULL_SYNC, provider="maya") is False
        assert await repo.has_active_job(JobType.COUNTRY_SYNC, provider="esimgo", country_id="DE") is False
        assert await repo.has_active_job(JobType.COUNTRY_SYNC, provider="esimgo", country_id="FR") is True
        assert await repo.has_active_job(JobType.GROUP_SYNC) is False

    @pytest.mark.asyncio
    async def test_active_job_details(self, db_session):
        repo = SyncJobRepository(db_session)
        job = await repo.create_job(JobType.GROUP_SYNC, provider="esimgo", bundle_group="Standard Fixed")

        active = await repo.get_active_job_details(JobType.GROUP_SYNC, bundle_group="Standard Fixed")

        assert active.id == job.id
        assert await repo.get_active_job_details(JobType.GROUP_SYNC, bundle_group="Other") is None
        assert [j.id for j in await repo.get_active_jobs()] == [job.id]


class TestStuckJobs:

    @pytest.mark.asyncio
    async def test_job_running_past_threshold_is_cancelled(self, db_session):
        repo = SyncJobRepository(db_session)
        stuck = await repo.create_job(JobType.FULL_SYNC, provider="esimgo")
        await repo.start_job(stuck.id)
        await backdate(db_session, stuck.id, started_at=datetime.utcnow() - timedelta(minutes=45))

        fresh = await repo.create_job(JobType.FULL_SYNC, provider="maya")
        await repo.start_job(fresh.id)

        assert [j.id for j in await repo.get_stuck_jobs(30)] == [stuck.id]
        assert await repo.cancel_stuck_jobs(30) == 1

        stuck = await repo.get_job(stuck.id)
        assert stuck.status == JobStatus.CANCELLED
        assert "30 minutes" in stuck.error_message
        assert (await repo.get_job(fresh.id)).status == JobStatus.RUNNING
        assert await repo.has_active_job(JobType.FULL_SYNC, provider="esimgo") is False

    @pytest.mark.asyncio
    async def test_cancel_pending_jobs(self, db_session):
        repo = SyncJobRepository(db_session)
        await repo.create_job(JobType.FULL_SYNC, provider="esimgo")
        await repo.create_job(JobType.FULL_SYNC, provider="maya")
        running = await repo.create_job(JobType.COUNTRY_SYNC, provider="esimgo", country_id="FR")
        await repo.start_job(running.id)

        assert await repo.cancel_pending_jobs(provider="esimgo", reason="cleanup") == 1
        assert await repo.cancel_pending_jobs() == 1
        assert (await repo.get_job(running.id)).status == JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_stale_pending_jobs(self, db_session):
        repo = SyncJobRepository(db_session)
        old = await repo.create_job(JobType.FULL_SYNC, provider="esimgo")
        await repo.create_job(JobType.FULL_SYNC, provider="maya")
        old_running = await repo.create_job(JobType.COUNTRY_SYNC, provider="esimgo", country_id="FR")
        await repo.start_job(old_running.id)
        for job_id in (old.id, old_running.id):
            await backdate(db_session, job_id, created_at=datetime.utcnow() - timedelta(minutes=45))

        stale = await repo.get_stale_pending_jobs(threshold_minutes=30)

        assert [job.id for job in stale] == [old.id]


class TestHistory:

    @pytest.mark.asyncio
    async def test_history_filters_and_paginates(self, db_session):
        repo = SyncJobRepository(db_session)
        ids = []
        for i in range(5):
            job = await repo.create_job(JobType.FULL_SYNC, provider="esimgo")
            await backdate(db_session, job.id, created_at=datetime.utcnow() - timedelta(minutes=10 - i))
            ids.append(job.id)
        for job_id in ids[:3]:
            await repo.start_job(job_id)
            await repo.complete_job(job_id, 1, 1, 0)
        await repo.create_job(JobType.COUNTRY_SYNC, provider="esimgo", country_id="FR")

        jobs, total = await repo.get_job_history(status=JobStatus.COMPLETED, limit=2, offset=0)
        assert total == 3
        assert [j.id for j in jobs] == [ids[2], ids[1]]

        jobs, total = await repo.get_job_history(job_type=JobType.FULL_SYNC, limit=10, offset=4)
        assert total == 5
        assert [j.id for j in jobs] == [ids[0]]

    @pytest.mark.asyncio
    async def test_cleanup_old_jobs_keeps_active_and_recent(self, db_session):
        repo = SyncJobRepository(db_session)
        old = await repo.create_job(JobType.FULL_SYNC, provider="esimgo")
        await repo.start_job(old.id)
        await repo.complete_job(old.id, 0, 0, 0)
        await backdate(db_session, old.id, completed_at=datetime.utcnow() - timedelta(days=40))

        recent = await repo.create_job(JobType.FULL_SYNC, provider="esimgo")
        await repo.start_job(recent.id)
        await repo.fail_job(recent.id, "boom")

        pending = await repo.create_job(JobType.FULL_SYNC, provider="maya")

        assert await repo.cleanup_old_jobs(days=30) == 1
        assert await repo.get_job(old.id) is None
        assert await repo.get_job(recent.id) is not None
        assert await repo.get_job(pending.id) is not None
