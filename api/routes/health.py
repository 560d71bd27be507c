"""
Health check endpoint: Redis, database and queue status
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis
import logging

from api.dependencies import get_db, get_queue_manager, get_redis
from catalog_sync.queue import QueueManager
from schemas.api import HealthChecks, HealthResponse

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse, responses={503: {"model": HealthResponse}})
async def health_check(
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
    queue_manager: QueueManager = Depends(get_queue_manager),
):
    """
    Health check endpoint.

    Returns 200 when Redis and the database answer, 503 otherwise. Queue
    stats are included whenever Redis is reachable.
    """
    checks = HealthChecks()
    queue_stats = None

    try:
        await redis_client.ping()
        checks.redis = True
    except Exception as e:
        logger.error(f"Redis health check failed: {str(e)}")

    try:
        await db.execute(text("SELECT 1"))
        checks.database = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    if checks.redis:
        try:
            queue_stats = await queue_manager.get_queue_stats()
            checks.queue = True
        except Exception as e:
            logger.error(f"Queue stats unavailable: {str(e)}")

    healthy = checks.redis and checks.database
    response = HealthResponse(
        status="healthy" if healthy else "unhealthy",
        checks=checks,
        queue=queue_stats,
    )
    return JSONResponse(status_code=200 if healthy else 503, content=response.model_dump(mode="json"))
