"""
Sync worker: consume the catalog-sync queue and run jobs through the registry.

For every job:
1. Reuse the pending sync job row named in the payload, or create one
2. Resolve the handler for (job type, provider) and run it
3. Complete the queue job with the SyncResult, or hand the error to
   SyncQueue.fail() which applies retry/backoff (non-retryable errors go
   straight to failed)

Concurrency is bounded by a semaphore. A heartbeat extends the lease of
every running job and a background loop requeues stalled jobs.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.exceptions import NonRetryableError, QueueError
from models.base import JobStatus
from schemas.jobs import SyncJobPayload, SyncResult
from catalog_sync.queue import QueueJob, SyncQueue
from catalog_sync.registry import JobHandlerRegistry
from catalog_sync.repositories import SyncJobRepository

logger = logging.getLogger(__name__)

EVENTS = ("ready", "completed", "failed", "stalled", "error")


class SyncWorker:
    """
    Queue consumer with explicit start()/close().

    Args:
        queue: Queue to consume
        registry: Job routing table
        session_factory: Opens sessions for sync job bookkeeping
        concurrency: Jobs processed at the same time
        poll_interval: Seconds to sleep when the queue is empty or paused
        stalled_interval: Seconds between stalled-job sweeps
    """

    def __init__(
        self,
        queue: SyncQueue,
        registry: JobHandlerRegistry,
        session_factory: async_sessionmaker,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
        stalled_interval: Optional[float] = None,
        lease_seconds: Optional[float] = None,
    ):
        self.queue = queue
        self.registry = registry
        self.session_factory = session_factory
        self.concurrency = concurrency or settings.WORKER_CONCURRENCY
        self.poll_interval = poll_interval if poll_interval is not None else settings.WORKER_POLL_INTERVAL_SECONDS
        self.stalled_interval = (
            stalled_interval if stalled_interval is not None else settings.WORKER_STALLED_INTERVAL_SECONDS
        )
        self.lease_seconds = lease_seconds or settings.WORKER_LEASE_SECONDS

        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._listeners: Dict[str, List[Callable[..., Any]]] = {event: [] for event in EVENTS}
        self._loops: List[asyncio.Task] = []
        self._jobs: Set[asyncio.Task] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown worker event: {event}")
        self._listeners[event].append(callback)

    async def _emit(self, event: str, *args) -> None:
        for callback in self._listeners[event]:
            try:
                outcome = callback(*args)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Worker '{event}' listener raised: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._loops = [
            asyncio.create_task(self._poll_loop(), name="sync-worker-poll"),
            asyncio.create_task(self._stalled_loop(), name="sync-worker-stalled"),
        ]
        logger.info(f"Sync worker started (concurrency={self.concurrency}, queue={self.queue.name})")
        await self._emit("ready")

    async def close(self, timeout: Optional[float] = None) -> None:
        """Stop polling and wait for in-flight jobs"""
        self._running = False
        for task in self._loops:
            task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []

        if self._jobs:
            logger.info(f"Waiting for {len(self._jobs)} in-flight jobs")
            done, pending = await asyncio.wait(set(self._jobs), timeout=timeout)
            for task in pending:
                task.cancel()
        logger.info("Sync worker closed")

    async def run_once(self) -> Optional[SyncResult]:
        """Fetch and process a single job inline; None when nothing was run successfully"""
        job = await self.queue.fetch_next()
        if job is None:
            return None
        return await self.process(job)

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def _poll_loop(self) -> None:
        while self._running:
            await self._semaphore.acquire()
            try:
                job = await self.queue.fetch_next()
            except QueueError as e:
                self._semaphore.release()
                logger.error(f"Failed to fetch next job: {e}")
                await self._emit("error", e)
                await asyncio.sleep(self.poll_interval)
                continue

            if job is None:
                self._semaphore.release()
                await asyncio.sleep(self.poll_interval)
                continue

            task = asyncio.create_task(self._run_job(job), name=f"sync-job-{job.id}")
            self._jobs.add(task)
            task.add_done_callback(self._jobs.discard)

    async def _run_job(self, job: QueueJob) -> None:
        try:
            await self.process(job)
        finally:
            self._semaphore.release()

    async def _stalled_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.stalled_interval)
            try:
                requeued, failed = await self.queue.requeue_stalled()
            except QueueError as e:
                logger.error(f"Stalled job check failed: {e}")
                await self._emit("error", e)
                continue
            for job_id in requeued + failed:
                logger.warning(f"Job {job_id} stalled")
                await self._emit("stalled", job_id)

    async def _heartbeat(self, job: QueueJob) -> None:
        while True:
            await asyncio.sleep(max(self.lease_seconds / 3, 0.1))
            try:
                await self.queue.extend_lease(job)
            except RedisError as e:
                logger.warning(f"Lease extension failed for job {job.id}: {e}")

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process(self, job: QueueJob) -> Optional[SyncResult]:
        """
        Run one claimed job to completion.

        Returns the SyncResult on success. On failure the queue records the
        attempt (retry or failed) and None is returned.
        """
        heartbeat = asyncio.create_task(self._heartbeat(job))
        sync_job_id: Optional[str] = None

        try:
            payload = SyncJobPayload.model_validate(job.data)
            logger.info(f"Processing job {job.id} ({payload.type.value}, provider={payload.provider})")

            sync_job_id = await self._prepare_sync_job(payload, job)
            handler = self.registry.resolve(payload.type, payload.provider)
            result = await handler(payload, sync_job_id)

        except Exception as e:
            retryable = not isinstance(e, NonRetryableError)
            logger.error(f"Job {job.id} failed: {e}", extra={"error_context": {"queue_job_id": job.id}})

            if sync_job_id is not None:
                await self._fail_sync_job(sync_job_id, e)
            state = await self.queue.fail(job, e, retryable=retryable)
            await self._emit("failed", job, e, state)
            return None

        finally:
            heartbeat.cancel()

        await self.queue.complete(job, result.model_dump(mode="json"))
        logger.info(
            f"Job {job.id} completed: {result.processed} processed, {result.added} added, "
            f"{result.updated} updated{' (skipped)' if result.skipped else ''}"
        )
        await self._emit("completed", job, result)
        return result

    async def _prepare_sync_job(self, payload: SyncJobPayload, job: QueueJob) -> str:
        """Reuse the pending row from the payload, otherwise record a new one"""
        async with self.session_factory() as session:
            repo = SyncJobRepository(session)

            if payload.sync_job_id:
                existing = await repo.get_job(payload.sync_job_id)
                if existing is not None and existing.status == JobStatus.PENDING:
                    await repo.set_queue_job_id(existing.id, job.id)
                    return existing.id

            created = await repo.create_job(
                payload.type,
                provider=payload.provider,
                priority=payload.priority,
                bundle_group=payload.bundle_group,
                country_id=payload.country_id,
                metadata={"triggered_by": payload.triggered_by, "attempt": job.attempts_made + 1},
                queue_job_id=job.id,
            )
            return created.id

    async def _fail_sync_job(self, sync_job_id: str, error: Exception) -> None:
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        try:
            async with self.session_factory() as session:
                await SyncJobRepository(session).fail_job(sync_job_id, message)
        except Exception as e:
            logger.error(f"Could not mark sync job {sync_job_id} failed: {e}")
