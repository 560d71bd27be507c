"""
Job routing: (job type, provider) -> handler coroutine
"""

from typing import Awaitable, Callable, Dict, Mapping, Tuple
import logging

from core.exceptions import UnsupportedJobError
from models.base import JobType
from schemas.jobs import SyncJobPayload, SyncResult
from catalog_sync.service import CatalogSyncService

logger = logging.getLogger(__name__)

JobHandler = Callable[[SyncJobPayload, str], Awaitable[SyncResult]]


class JobHandlerRegistry:
    """Map job type and provider to the coroutine that runs the job"""

    def __init__(self):
        self._handlers: Dict[Tuple[JobType, str], JobHandler] = {}

    def register(self, job_type: JobType, provider: str, handler: JobHandler) -> None:
        self._handlers[(JobType(job_type), provider.lower())] = handler
        logger.debug(f"Registered handler for {JobType(job_type).value}/{provider}")

    def resolve(self, job_type: JobType, provider: str) -> JobHandler:
        try:
            return self._handlers[(JobType(job_type), provider.lower())]
        except (KeyError, ValueError):
            raise UnsupportedJobError(
                f"No handler registered for {job_type} on provider {provider}",
                context={"job_type": str(job_type), "provider": provider}
            )

    def supports(self, job_type: JobType, provider: str) -> bool:
        return (JobType(job_type), provider.lower()) in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


def _full_sync(service) -> JobHandler:
    async def handler(payload: SyncJobPayload, sync_job_id: str) -> SyncResult:
        return await service.sync_full_catalog(job_id=sync_job_id)
    return handler


def _group_sync(service) -> JobHandler:
    async def handler(payload: SyncJobPayload, sync_job_id: str) -> SyncResult:
        if not payload.bundle_group:
            raise UnsupportedJobError("Group sync job without bundle_group", context={"provider": payload.provider})
        return await service.sync_bundle_group(payload.bundle_group, job_id=sync_job_id)
    return handler


def _country_sync(service) -> JobHandler:
    async def handler(payload: SyncJobPayload, sync_job_id: str) -> SyncResult:
        if not payload.country_id:
            raise UnsupportedJobError("Country sync job without country_id", context={"provider": payload.provider})
        return await service.sync_country_bundles(payload.country_id, job_id=sync_job_id)
    return handler


def _metadata_sync(service) -> JobHandler:
    async def handler(payload: SyncJobPayload, sync_job_id: str) -> SyncResult:
        return await service.refresh_metadata(job_id=sync_job_id)
    return handler


def build_handler_registry(services: Mapping[str, CatalogSyncService]) -> JobHandlerRegistry:
    """
    Register handlers for every provider service.

    FULL, COUNTRY and METADATA syncs are registered for every provider;
    GROUP syncs only where the provider client supports bundle groups.
    """
    registry = JobHandlerRegistry()
    for provider, service in services.items():
        registry.register(JobType.FULL_SYNC, provider, _full_sync(service))
        registry.register(JobType.COUNTRY_SYNC, provider, _country_sync(service))
        registry.register(JobType.METADATA_SYNC, provider, _metadata_sync(service))
        if service.client.supports_groups:
            registry.register(JobType.GROUP_SYNC, provider, _group_sync(service))

    logger.info(f"Job handler registry built with {len(registry)} handlers for {len(services)} providers")
    return registry
