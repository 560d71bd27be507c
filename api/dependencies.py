"""
FastAPI dependencies backed by the SyncRuntime stored on app.state
"""

from typing import AsyncGenerator

import redis.asyncio as redis
from fastapi import Request
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_session
from catalog_sync.admin import SyncAdminService
from catalog_sync.queue import QueueManager
from catalog_sync.runtime import SyncRuntime


def get_runtime(request: Request) -> SyncRuntime:
    return request.app.state.runtime


def get_admin(runtime: SyncRuntime = Depends(get_runtime)) -> SyncAdminService:
    return runtime.admin


def get_queue_manager(runtime: SyncRuntime = Depends(get_runtime)) -> QueueManager:
    return runtime.queue_manager


def get_redis(runtime: SyncRuntime = Depends(get_runtime)) -> redis.Redis:
    return runtime.redis


async def get_db(runtime: SyncRuntime = Depends(get_runtime)) -> AsyncGenerator[AsyncSession, None]:
    """Dependency for database session"""
    async for session in get_session(runtime.session_factory):
        yield session
