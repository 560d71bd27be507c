"""Redis distributed lock for full catalog syncs.

Built on redis-py's Lock:
- acquire is SET key token NX PX ttl with a random token per acquisition
- release is a Lua compare-then-delete, so a lock that expired and was
  taken by another worker is never deleted by the previous owner

The lock never blocks and never retries. A held lock or a Redis error is
reported through LockResult, not raised.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis
from redis.exceptions import LockError as RedisLockError
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

PREFIX_FULL_SYNC_LOCK = "catalog-sync:lock:full-sync:"


def full_sync_lock_key(provider: str) -> str:
    return f"{PREFIX_FULL_SYNC_LOCK}{provider}"


async def _noop_release() -> None:
    return None


@dataclass
class LockResult:
    """Outcome of DistributedLock.acquire()"""

    acquired: bool
    token: Optional[str] = None
    error: Optional[str] = None
    release: Callable[[], Awaitable[None]] = field(default=_noop_release, repr=False)


class DistributedLock:
    """Single-shot lock on one Redis key.

    Args:
        client: Redis client.
        key: Lock key.
        ttl_seconds: Expiry; must exceed the longest expected hold time.
    """

    def __init__(self, client: redis.Redis, key: str, ttl_seconds: int):
        self.client = client
        self.key = key
        self.ttl_seconds = ttl_seconds

    async def acquire(self) -> LockResult:
        token = uuid.uuid4().hex
        lock = self.client.lock(
            self.key,
            timeout=self.ttl_seconds,
            blocking=False,
            thread_local=False,
        )

        try:
            acquired = await lock.acquire(token=token)
        except RedisError as e:
            logger.error(f"Lock acquire failed for {self.key}: {e}")
            return LockResult(acquired=False, error=str(e))

        if not acquired:
            return LockResult(acquired=False, error=f"Lock {self.key} is already held")

        logger.info(f"Acquired lock {self.key} (ttl={self.ttl_seconds}s)")

        async def release() -> None:
            try:
                await lock.release()
                logger.info(f"Released lock {self.key}")
            except RedisLockError as e:
                # Expired and possibly re-acquired by someone else; leave it alone
                logger.warning(f"Lock {self.key} was lost before release: {e}")
            except RedisError as e:
                logger.error(f"Lock release failed for {self.key}: {e}")

        return LockResult(acquired=True, token=token, release=release)
