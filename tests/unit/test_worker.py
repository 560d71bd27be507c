"""
Unit tests for the sync worker
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from catalog_sync.queue import QueueManager, SyncQueue
from catalog_sync.registry import JobHandlerRegistry
from catalog_sync.repositories import SyncJobRepository
from catalog_sync.worker import SyncWorker
from core.exceptions import NetworkError
from models.base import JobStatus, JobType
from schemas.jobs import SyncResult


@pytest.fixture
def queue(redis_client, test_settings):
    return SyncQueue(redis_client, test_settings.QUEUE_NAME, test_settings)


@pytest.fixture
def manager(queue, test_settings):
    return QueueManager(queue, test_settings)


@pytest.fixture
def registry():
    return JobHandlerRegistry()


@pytest.fixture
def worker(queue, registry, session_factory):
    return SyncWorker(
        queue,
        registry,
        session_factory,
        concurrency=2,
        poll_interval=0.01,
        stalled_interval=60,
        lease_seconds=30,
    )


def ok_result(**kwargs):
    return SyncResult(job_type=JobType.FULL_SYNC, provider="esimgo", processed=5, added=5, **kwargs)


async def create_pending(session_factory, **kwargs):
    async with session_factory() as session:
        return await SyncJobRepository(session).create_job(JobType.FULL_SYNC, provider="esimgo", **kwargs)


async def load_job(session_factory, job_id):
    async with session_factory() as session:
        return await SyncJobRepository(session).get_job(job_id)


@pytest.mark.asyncio
async def test_process_reuses_pending_row_and_completes(worker, registry, manager, queue, session_factory):
    handler = AsyncMock(return_value=ok_result())
    registry.register(JobType.FULL_SYNC, "esimgo", handler)
    completed = []
    worker.on("completed", lambda job, result: completed.append((job.id, result.processed)))

    pending = await create_pending(session_factory)
    queued = await manager.add_full_sync_job(provider="esimgo", sync_job_id=pending.id)

    result = await worker.run_once()

    assert result.processed == 5
    payload, sync_job_id = handler.await_args.args
    assert sync_job_id == pending.id
    assert payload.type == JobType.FULL_SYNC
    assert completed == [(queued.id, 5)]

    stored = await queue.get_job(queued.id)
    assert stored.state == "completed"
    assert stored.return_value["processed"] == 5
    assert (await load_job(session_factory, pending.id)).queue_job_id == queued.id


@pytest.mark.asyncio
async def test_cancelled_row_is_not_reused(worker, registry, manager, session_factory):
    handler = AsyncMock(return_value=ok_result())
    registry.register(JobType.FULL_SYNC, "esimgo", handler)

    pending = await create_pending(session_factory)
    async with session_factory() as session:
        await SyncJobRepository(session).cancel_job(pending.id, "cleanup")
    queued = await manager.add_full_sync_job(provider="esimgo", sync_job_id=pending.id)

    await worker.run_once()

    _, sync_job_id = handler.await_args.args
    assert sync_job_id != pending.id
    created = await load_job(session_factory, sync_job_id)
    assert created.queue_job_id == queued.id
    assert created.job_metadata["attempt"] == 1


@pytest.mark.asyncio
async def test_retryable_failure_marks_row_failed_and_delays(worker, registry, manager, queue, session_factory):
    registry.register(JobType.FULL_SYNC, "esimgo", AsyncMock(side_effect=NetworkError("Request timeout")))
    failures = []
    worker.on("failed", lambda job, error, state: failures.append(state))

    pending = await create_pending(session_factory)
    queued = await manager.add_full_sync_job(provider="esimgo", sync_job_id=pending.id)

    assert await worker.run_once() is None

    assert failures == ["delayed"]
    assert (await queue.get_job(queued.id)).state == "delayed"
    job = await load_job(session_factory, pending.id)
    assert job.status == JobStatus.FAILED
    assert job.error_message == "Request timeout"


@pytest.mark.asyncio
async def test_unsupported_job_fails_without_retry(worker, manager, queue):
    failures = []
    worker.on("failed", lambda job, error, state: failures.append((type(error).__name__, state)))

    queued = await manager.add_group_sync_job("Standard Fixed", provider="maya")

    assert await worker.run_once() is None

    assert failures == [("UnsupportedJobError", "failed")]
    assert (await queue.get_job(queued.id)).attempts_made == 1


@pytest.mark.asyncio
async def test_run_once_on_empty_queue(worker):
    assert await worker.run_once() is None


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_processing(worker, registry, manager):
    registry.register(JobType.FULL_SYNC, "esimgo", AsyncMock(return_value=ok_result()))

    def broken(job, result):
        raise RuntimeError("listener bug")

    worker.on("completed", broken)
    await manager.add_full_sync_job(provider="esimgo")

    assert (await worker.run_once()).processed == 5


def test_unknown_event_rejected(worker):
    with pytest.raises(ValueError):
        worker.on("finished", lambda: None)


@pytest.mark.asyncio
async def test_started_worker_consumes_queue(worker, registry, manager):
    registry.register(JobType.FULL_SYNC, "esimgo", AsyncMock(return_value=ok_result()))
    registry.register(JobType.FULL_SYNC, "maya", AsyncMock(return_value=ok_result()))
    done = asyncio.Event()
    completed = []
    ready = []

    def on_completed(job, result):
        completed.append(job.id)
        if len(completed) == 2:
            done.set()

    worker.on("ready", lambda: ready.append(True))
    worker.on("completed", on_completed)

    await manager.add_full_sync_job(provider="esimgo")
    await manager.add_full_sync_job(provider="maya")
    await worker.start()
    try:
        await asyncio.wait_for(done.wait(), timeout=5)
    finally:
        await worker.close(timeout=5)

    assert ready == [True]
    assert len(completed) == 2
    assert worker.running is False
