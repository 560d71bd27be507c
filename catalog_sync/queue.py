"""Redis-backed durable job queue for catalog syncs.

Key layout (prefix catalog-sync:<queue name>:):
- id         counter for job ids
- job:<id>   hash with the job's data, attempts and result
- waiting    sorted set, score = priority band + enqueue time (lower first)
- delayed    sorted set, score = time the job becomes ready again
- active     sorted set, score = lease deadline
- completed  sorted set, score = finish time
- failed     sorted set, score = finish time
- paused     flag; fetch_next() returns nothing while it is set

Jobs that fail with a retryable error go to `delayed` with exponential
backoff plus jitter until their attempts are exhausted. Active jobs whose
lease expires are requeued by requeue_stalled().

Moves between sets run as Lua scripts so a job id is always in exactly one
set, even if the caller dies mid-move.
"""

import json
import logging
import random
import time
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis
from pydantic import BaseModel, Field
from redis.exceptions import RedisError

from core.config import Settings, settings as default_settings
from core.exceptions import QueueError
from models.base import JobType, JobPriority
from schemas.api import QueueStats
from schemas.jobs import SyncJobPayload

logger = logging.getLogger(__name__)

# Wide enough that every priority band sorts before the next one
PRIORITY_BAND = 10_000_000_000

STATES = ("waiting", "delayed", "active", "completed", "failed")

# Queue priorities (lower runs first)
PRIORITY_MANUAL_FULL_SYNC = 1
PRIORITY_SCHEDULED_FULL_SYNC = 2
PRIORITY_GROUP_SYNC = 3
PRIORITY_COUNTRY_SYNC = 4
PRIORITY_METADATA_SYNC = 5

# KEYS: paused, waiting, active
# ARGV: now, lease deadline, job key prefix
CLAIM_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return false
end
while true do
    local popped = redis.call('ZPOPMIN', KEYS[2], 1)
    if #popped == 0 then
        return false
    end
    local job_key = ARGV[3] .. popped[1]
    if redis.call('EXISTS', job_key) == 1 then
        redis.call('ZADD', KEYS[3], ARGV[2], popped[1])
        redis.call('HSET', job_key, 'state', 'active', 'processed_on', ARGV[1])
        return popped[1]
    end
end
"""

# KEYS: delayed, waiting
# ARGV: now, job key prefix, priority band
PROMOTE_SCRIPT = """
local due = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
for _, job_id in ipairs(due) do
    redis.call('ZREM', KEYS[1], job_id)
    local job_key = ARGV[2] .. job_id
    local priority = tonumber(redis.call('HGET', job_key, 'priority') or '0')
    local score = priority * tonumber(ARGV[3]) + tonumber(ARGV[1])
    redis.call('ZADD', KEYS[2], string.format('%.6f', score), job_id)
    redis.call('HSET', job_key, 'state', 'waiting')
end
return #due
"""

# KEYS: active, waiting, failed
# ARGV: now, job key prefix, priority band, max stalled count
STALLED_SCRIPT = """
local expired = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
local requeued = {}
local failed = {}
for _, job_id in ipairs(expired) do
    redis.call('ZREM', KEYS[1], job_id)
    local job_key = ARGV[2] .. job_id
    if redis.call('EXISTS', job_key) == 1 then
        local stalled = redis.call('HINCRBY', job_key, 'stalled_count', 1)
        if stalled > tonumber(ARGV[4]) then
            redis.call('ZADD', KEYS[3], ARGV[1], job_id)
            redis.call('HSET', job_key, 'state', 'failed',
                'failed_reason', 'job stalled more than allowable limit', 'finished_on', ARGV[1])
            table.insert(failed, job_id)
        else
            local priority = tonumber(redis.call('HGET', job_key, 'priority') or '0')
            local score = priority * tonumber(ARGV[3]) + tonumber(ARGV[1])
            redis.call('ZADD', KEYS[2], string.format('%.6f', score), job_id)
            redis.call('HSET', job_key, 'state', 'waiting')
            table.insert(requeued, job_id)
        end
    end
end
return {requeued, failed}
"""


class QueueJob(BaseModel):
    """A job as stored in its Redis hash"""
    id: str
    name: str
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = PRIORITY_METADATA_SYNC
    attempts_made: int = 0
    max_attempts: int = 3
    backoff_seconds: float = 5.0
    stalled_count: int = 0
    state: str = "waiting"
    created_at: float = 0.0
    processed_on: Optional[float] = None
    finished_on: Optional[float] = None
    failed_reason: Optional[str] = None
    return_value: Optional[Dict[str, Any]] = None

    def to_hash(self) -> Dict[str, str]:
        mapping = {
            "name": self.name,
            "data": json.dumps(self.data, default=str),
            "priority": str(self.priority),
            "attempts_made": str(self.attempts_made),
            "max_attempts": str(self.max_attempts),
            "backoff_seconds": str(self.backoff_seconds),
            "stalled_count": str(self.stalled_count),
            "state": self.state,
            "created_at": str(self.created_at),
        }
        return mapping

    @classmethod
    def from_hash(cls, job_id: str, raw: Dict[str, str]) -> "QueueJob":
        def _float(key):
            value = raw.get(key)
            return float(value) if value not in (None, "") else None

        return_value = raw.get("return_value")
        return cls(
            id=job_id,
            name=raw.get("name", ""),
            data=json.loads(raw.get("data") or "{}"),
            priority=int(raw.get("priority", PRIORITY_METADATA_SYNC)),
            attempts_made=int(raw.get("attempts_made", 0)),
            max_attempts=int(raw.get("max_attempts", 1)),
            backoff_seconds=float(raw.get("backoff_seconds", 0)),
            stalled_count=int(raw.get("stalled_count", 0)),
            state=raw.get("state", "waiting"),
            created_at=float(raw.get("created_at", 0)),
            processed_on=_float("processed_on"),
            finished_on=_float("finished_on"),
            failed_reason=raw.get("failed_reason") or None,
            return_value=json.loads(return_value) if return_value else None,
        )


class SyncQueue:
    """
    Durable priority queue with delayed retries, leases and retention.

    Args:
        client: Redis client created with decode_responses=True
        name: Queue name, part of every key
        settings: Attempts, backoff, lease and retention defaults
    """

    def __init__(self, client: redis.Redis, name: Optional[str] = None, settings: Settings = default_settings):
        self.client = client
        self.name = name or settings.QUEUE_NAME
        self.settings = settings
        self.prefix = f"catalog-sync:{self.name}:"
        self._claim = client.register_script(CLAIM_SCRIPT)
        self._promote = client.register_script(PROMOTE_SCRIPT)
        self._requeue = client.register_script(STALLED_SCRIPT)

    def key(self, suffix: str) -> str:
        return f"{self.prefix}{suffix}"

    def job_key(self, job_id: str) -> str:
        return self.key(f"job:{job_id}")

    @staticmethod
    def _waiting_score(priority: int, enqueued_at: float) -> float:
        return priority * PRIORITY_BAND + enqueued_at

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def add(
        self,
        name: str,
        payload: Dict[str, Any],
        priority: int = PRIORITY_METADATA_SYNC,
        attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ) -> QueueJob:
        try:
            job_id = str(await self.client.incr(self.key("id")))
            now = time.time()
            job = QueueJob(
                id=job_id,
                name=name,
                data=payload,
                priority=priority,
                max_attempts=attempts or self.settings.QUEUE_DEFAULT_ATTEMPTS,
                backoff_seconds=backoff_seconds if backoff_seconds is not None else self.settings.QUEUE_BACKOFF_SECONDS,
                created_at=now,
            )

            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(self.job_key(job_id), mapping=job.to_hash())
                pipe.zadd(self.key("waiting"), {job_id: self._waiting_score(priority, now)})
                await pipe.execute()
        except RedisError as e:
            raise QueueError(
                f"Failed to enqueue {name} job",
                context={"queue": self.name, "operation": "add"},
                original_exception=e,
            )

        logger.info(f"Queued job {job_id} ({name}, priority {priority})")
        return job

    async def get_job(self, job_id: str) -> Optional[QueueJob]:
        raw = await self.client.hgetall(self.job_key(job_id))
        if not raw:
            return None
        return QueueJob.from_hash(job_id, raw)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def promote_delayed(self) -> int:
        """Move delayed jobs whose retry time has passed back to waiting"""
        return await self._promote(
            keys=[self.key("delayed"), self.key("waiting")],
            args=[repr(time.time()), self.key("job:"), PRIORITY_BAND],
        )

    async def fetch_next(self) -> Optional[QueueJob]:
        """
        Claim the highest-priority waiting job, or None (also while paused).

        The pop from waiting, the lease in active and the state change run
        in one script. Ids whose hash is gone are dropped.

        Raises:
            QueueError: Redis is unavailable
        """
        now = time.time()
        try:
            await self.promote_delayed()
            job_id = await self._claim(
                keys=[self.key("paused"), self.key("waiting"), self.key("active")],
                args=[repr(now), repr(now + self.settings.WORKER_LEASE_SECONDS), self.key("job:")],
            )
            if job_id is None:
                return None
            return await self.get_job(job_id)
        except RedisError as e:
            raise QueueError(
                "Failed to claim next job",
                context={"queue": self.name, "operation": "fetch_next"},
                original_exception=e,
            )

    async def extend_lease(self, job: QueueJob) -> bool:
        deadline = time.time() + self.settings.WORKER_LEASE_SECONDS
        updated = await self.client.zadd(self.key("active"), {job.id: deadline}, xx=True, ch=True)
        return bool(updated)

    async def complete(self, job: QueueJob, result: Optional[Dict[str, Any]] = None) -> None:
        now = time.time()
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zrem(self.key("active"), job.id)
            pipe.zadd(self.key("completed"), {job.id: now})
            pipe.hset(
                self.job_key(job.id),
                mapping={
                    "state": "completed",
                    "finished_on": str(now),
                    "return_value": json.dumps(result or {}, default=str),
                },
            )
            await pipe.execute()

        job.state = "completed"
        job.finished_on = now
        job.return_value = result
        await self._trim("completed", self.settings.QUEUE_KEEP_COMPLETED)

    def retry_delay(self, job: QueueJob) -> float:
        """Exponential backoff for the attempt just made, plus random jitter"""
        base = job.backoff_seconds * (2 ** max(job.attempts_made - 1, 0))
        return base + random.uniform(0, base * self.settings.QUEUE_BACKOFF_JITTER)

    async def fail(self, job: QueueJob, error: Any, retryable: bool = True) -> str:
        """
        Record a failed attempt.

        Returns:
            "delayed" when the job will be retried, "failed" otherwise
        """
        now = time.time()
        job.attempts_made += 1
        job.failed_reason = str(error)[:2000]

        if retryable and job.attempts_made < job.max_attempts:
            delay = self.retry_delay(job)
            job.state = "delayed"
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.zrem(self.key("active"), job.id)
                pipe.zadd(self.key("delayed"), {job.id: now + delay})
                pipe.hset(
                    self.job_key(job.id),
                    mapping={
                        "state": "delayed",
                        "attempts_made": str(job.attempts_made),
                        "failed_reason": job.failed_reason,
                    },
                )
                await pipe.execute()
            logger.warning(
                f"Job {job.id} ({job.name}) attempt {job.attempts_made}/{job.max_attempts} failed, "
                f"retrying in {delay:.1f}s: {job.failed_reason}"
            )
            return "delayed"

        job.state = "failed"
        job.finished_on = now
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zrem(self.key("active"), job.id)
            pipe.zadd(self.key("failed"), {job.id: now})
            pipe.hset(
                self.job_key(job.id),
                mapping={
                    "state": "failed",
                    "attempts_made": str(job.attempts_made),
                    "failed_reason": job.failed_reason,
                    "finished_on": str(now),
                },
            )
            await pipe.execute()
        logger.error(f"Job {job.id} ({job.name}) failed after {job.attempts_made} attempts: {job.failed_reason}")
        await self._trim("failed", self.settings.QUEUE_KEEP_FAILED)
        return "failed"

    async def requeue_stalled(self) -> Tuple[List[str], List[str]]:
        """
        Requeue active jobs whose lease expired.

        A job stalled more than MAX_STALLED_COUNT times is moved to failed.

        Returns:
            (requeued job ids, failed job ids)

        Raises:
            QueueError: Redis is unavailable
        """
        try:
            requeued, failed = await self._requeue(
                keys=[self.key("active"), self.key("waiting"), self.key("failed")],
                args=[repr(time.time()), self.key("job:"), PRIORITY_BAND, self.settings.MAX_STALLED_COUNT],
            )
        except RedisError as e:
            raise QueueError(
                "Failed to requeue stalled jobs",
                context={"queue": self.name, "operation": "requeue_stalled"},
                original_exception=e,
            )

        requeued, failed = list(requeued), list(failed)
        if requeued or failed:
            logger.warning(f"Stalled jobs: {len(requeued)} requeued, {len(failed)} failed")
        return requeued, failed

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def _trim(self, state: str, keep: int) -> int:
        """Keep only the newest `keep` jobs in a finished state"""
        excess = await self.client.zcard(self.key(state)) - keep
        if excess <= 0:
            return 0
        job_ids = await self.client.zrange(self.key(state), 0, excess - 1)
        await self._remove(state, job_ids)
        return len(job_ids)

    async def _remove(self, state: str, job_ids: List[str]) -> None:
        if not job_ids:
            return
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zrem(self.key(state), *job_ids)
            pipe.delete(*[self.job_key(job_id) for job_id in job_ids])
            await pipe.execute()

    async def clean(self, grace_seconds: float, limit: int = 1000, state: str = "completed") -> int:
        """Delete up to `limit` jobs in `state` that finished more than grace_seconds ago"""
        if state not in ("completed", "failed"):
            raise ValueError(f"Cannot clean jobs in state {state}")
        cutoff = time.time() - grace_seconds
        job_ids = await self.client.zrangebyscore(self.key(state), "-inf", cutoff, start=0, num=limit)
        await self._remove(state, job_ids)
        if job_ids:
            logger.info(f"Cleaned {len(job_ids)} {state} jobs from queue {self.name}")
        return len(job_ids)

    async def get_counts(self) -> Dict[str, int]:
        async with self.client.pipeline(transaction=False) as pipe:
            for state in STATES:
                pipe.zcard(self.key(state))
            counts = await pipe.execute()
        return dict(zip(STATES, counts))

    async def pause(self) -> None:
        await self.client.set(self.key("paused"), "1")
        logger.info(f"Queue {self.name} paused")

    async def resume(self) -> None:
        await self.client.delete(self.key("paused"))
        logger.info(f"Queue {self.name} resumed")

    async def is_paused(self) -> bool:
        return bool(await self.client.exists(self.key("paused")))


class QueueManager:
    """
    Typed producers for the sync queue.

    Priorities: manual full sync 1, scheduled full sync 2, group 3,
    country 4, metadata 5.
    """

    def __init__(self, queue: SyncQueue, settings: Settings = default_settings):
        self.queue = queue
        self.settings = settings

    async def _add(self, name: str, payload: SyncJobPayload, priority: int) -> QueueJob:
        return await self.queue.add(name, payload.model_dump(mode="json"), priority=priority)

    async def add_full_sync_job(
        self,
        triggered_by: str = "manual",
        provider: Optional[str] = None,
        sync_job_id: Optional[str] = None,
    ) -> QueueJob:
        scheduled = triggered_by == "scheduled"
        payload = SyncJobPayload(
            type=JobType.FULL_SYNC,
            provider=provider or self.settings.DEFAULT_PROVIDER,
            priority=JobPriority.NORMAL if scheduled else JobPriority.HIGH,
            triggered_by=triggered_by,
            sync_job_id=sync_job_id,
        )
        priority = PRIORITY_SCHEDULED_FULL_SYNC if scheduled else PRIORITY_MANUAL_FULL_SYNC
        return await self._add("full-sync", payload, priority)

    async def add_group_sync_job(
        self,
        bundle_group: str,
        provider: Optional[str] = None,
        sync_job_id: Optional[str] = None,
        triggered_by: str = "manual",
    ) -> QueueJob:
        payload = SyncJobPayload(
            type=JobType.GROUP_SYNC,
            provider=provider or "esimgo",
            priority=JobPriority.NORMAL,
            triggered_by=triggered_by,
            bundle_group=bundle_group,
            sync_job_id=sync_job_id,
        )
        return await self._add("group-sync", payload, PRIORITY_GROUP_SYNC)

    async def add_country_sync_job(
        self,
        country_id: str,
        provider: Optional[str] = None,
        sync_job_id: Optional[str] = None,
        triggered_by: str = "manual",
    ) -> QueueJob:
        payload = SyncJobPayload(
            type=JobType.COUNTRY_SYNC,
            provider=provider or self.settings.DEFAULT_PROVIDER,
            priority=JobPriority.NORMAL,
            triggered_by=triggered_by,
            country_id=country_id.upper(),
            sync_job_id=sync_job_id,
        )
        return await self._add("country-sync", payload, PRIORITY_COUNTRY_SYNC)

    async def add_metadata_sync_job(self, provider: Optional[str] = None, triggered_by: str = "scheduled") -> QueueJob:
        payload = SyncJobPayload(
            type=JobType.METADATA_SYNC,
            provider=provider or self.settings.DEFAULT_PROVIDER,
            priority=JobPriority.LOW,
            triggered_by=triggered_by,
        )
        return await self._add("metadata-sync", payload, PRIORITY_METADATA_SYNC)

    async def get_queue_stats(self) -> QueueStats:
        counts = await self.queue.get_counts()
        return QueueStats(
            **counts,
            paused=await self.queue.is_paused(),
            total=sum(counts.values()),
        )

    async def clean_old_jobs(self) -> Dict[str, int]:
        """Completed jobs older than a day, failed jobs older than a week"""
        completed = await self.queue.clean(24 * 60 * 60, 1000, "completed")
        failed = await self.queue.clean(7 * 24 * 60 * 60, 1000, "failed")
        return {"completed": completed, "failed": failed}

    async def pause(self) -> None:
        await self.queue.pause()

    async def resume(self) -> None:
        await self.queue.resume()
