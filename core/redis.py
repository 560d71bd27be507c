"""Redis connection management.

Redis backs two things in the sync engine:
- the durable job queue (catalog_sync.queue)
- the full-sync distributed lock (catalog_sync.lock)

Clients are created explicitly and owned by the runtime that created them;
there is no module-level connection.
"""

import logging

import redis.asyncio as redis

from core.config import settings

logger = logging.getLogger(__name__)


async def create_redis(redis_url: str = None, ping: bool = True) -> redis.Redis:
    """Create a Redis client and validate connectivity.

    Args:
        redis_url: Connection URL. Defaults to settings.REDIS_URL.
        ping: Fail fast if the server is unreachable.

    Returns:
        Connected Redis client.
    """
    client = redis.from_url(
        redis_url or settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=10,
    )
    if ping:
        await client.ping()
        logger.info("Redis connected")
    return client


async def close_redis(client: redis.Redis) -> None:
    """Close a Redis client."""
    if client is not None:
        await client.aclose()
        logger.info("Redis connection closed")
