"""
Runtime wiring for the API, worker and scheduler processes.

SyncRuntime owns every long-lived resource (engine, Redis client,
provider HTTP clients) and builds the services on top of them. Nothing is
a module-level singleton; each process creates one runtime, starts it and
closes it on shutdown.
"""

from typing import Dict, Iterable, Optional
import logging

import redis.asyncio as redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from core.config import Settings, settings as default_settings
from core.database import create_engine, create_session_factory
from core.exceptions import DatabaseConnectionError
from core.redis import create_redis, close_redis
from catalog_sync.admin import SyncAdminService
from catalog_sync.providers import ProviderClient, create_provider_client
from catalog_sync.queue import QueueManager, SyncQueue
from catalog_sync.registry import JobHandlerRegistry, build_handler_registry
from catalog_sync.scheduler import CatalogSyncScheduler
from catalog_sync.service import CatalogSyncService
from catalog_sync.transformers import get_transformer
from catalog_sync.worker import SyncWorker

logger = logging.getLogger(__name__)


class SyncRuntime:
    """
    Container for the sync engine's collaborators.

    Args:
        settings: Application settings
        providers: Providers to build services for (defaults to
            ENABLED_PROVIDERS); set to [] for processes that only enqueue
    """

    def __init__(self, settings: Settings = default_settings, providers: Optional[Iterable[str]] = None):
        self.settings = settings
        self.provider_names = [p.lower() for p in (providers if providers is not None else settings.ENABLED_PROVIDERS)]

        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self.redis: Optional[redis.Redis] = None
        self.queue: Optional[SyncQueue] = None
        self.queue_manager: Optional[QueueManager] = None
        self.clients: Dict[str, ProviderClient] = {}
        self.services: Dict[str, CatalogSyncService] = {}
        self.registry: Optional[JobHandlerRegistry] = None
        self.admin: Optional[SyncAdminService] = None
        self._started = False

    async def start(self) -> "SyncRuntime":
        """
        Connect to the database and Redis and build services.

        Raises:
            ConfigurationError: provider credentials are missing
            DatabaseConnectionError: the database is unreachable
            redis.exceptions.ConnectionError: Redis is unreachable
        """
        if self._started:
            return self

        self.settings.require(
            "DATABASE_URL",
            "REDIS_URL",
            *(name for provider in self.provider_names for name in self.settings.provider_credentials(provider))
        )

        self.engine = create_engine(self.settings.DATABASE_URL)
        self.session_factory = create_session_factory(self.engine)
        try:
            await self._check_database()
            self.redis = await create_redis(self.settings.REDIS_URL)

            self.queue = SyncQueue(self.redis, self.settings.QUEUE_NAME, self.settings)
            self.queue_manager = QueueManager(self.queue, self.settings)

            for provider in self.provider_names:
                client = create_provider_client(provider)
                self.clients[provider] = client
                self.services[provider] = CatalogSyncService(
                    provider=provider,
                    client=client,
                    transformer=get_transformer(provider),
                    session_factory=self.session_factory,
                    redis_client=self.redis,
                    settings=self.settings,
                )

            self.registry = build_handler_registry(self.services)
            self.admin = SyncAdminService(
                self.session_factory,
                self.queue_manager,
                default_provider=self.settings.DEFAULT_PROVIDER,
                providers=self.settings.ENABLED_PROVIDERS,
            )
        except Exception:
            await self.close()
            raise

        self._started = True
        logger.info(f"Sync runtime started (providers: {', '.join(self.provider_names) or 'none'})")
        return self

    async def _check_database(self) -> None:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            raise DatabaseConnectionError(
                "Database connectivity check failed",
                context={"operation": "SELECT 1"},
                original_exception=e,
            )

    def build_worker(self, concurrency: Optional[int] = None) -> SyncWorker:
        return SyncWorker(
            self.queue,
            self.registry,
            self.session_factory,
            concurrency=concurrency or self.settings.WORKER_CONCURRENCY,
            poll_interval=self.settings.WORKER_POLL_INTERVAL_SECONDS,
            stalled_interval=self.settings.WORKER_STALLED_INTERVAL_SECONDS,
            lease_seconds=self.settings.WORKER_LEASE_SECONDS,
        )

    def build_scheduler(self) -> CatalogSyncScheduler:
        return CatalogSyncScheduler(
            self.admin,
            self.services,
            self.queue_manager,
            self.session_factory,
            self.settings,
        )

    async def close(self) -> None:
        for provider, client in self.clients.items():
            await client.close()
        self.clients = {}
        self.services = {}

        if self.redis is not None:
            await close_redis(self.redis)
            self.redis = None

        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None

        self._started = False
        logger.info("Sync runtime closed")
