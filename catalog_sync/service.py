"""
Catalog sync orchestration for one provider.

Pipeline per page:
1. Fetch - page through the provider catalog in provider order
2. Transform - validate and normalize raw bundles (rejects are counted)
3. Upsert - idempotent write of bundles, country links, activation
4. Progress - counters written to the sync job row after every page

Full syncs run under a per-provider Redis lock; scoped (group/country)
syncs do not. There is no cooperative cancellation: a sync whose job row
is cancelled keeps running and its final write is discarded by the guarded
terminal transitions in SyncJobRepository.
"""

from typing import Any, Dict, Optional
import enum
import logging
import time

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import Settings, settings as default_settings
from core.exceptions import UnsupportedJobError
from models.base import ApiHealthStatus, JobType, JobPriority
from schemas.jobs import SyncResult, UpsertResult
from catalog_sync.lock import DistributedLock, full_sync_lock_key
from catalog_sync.providers.base import CatalogFilters, ProviderClient
from catalog_sync.repositories import BundleRepository, CatalogMetadataRepository, SyncJobRepository
from catalog_sync.transformers.bundle_transformer import BundleTransformer, TransformContext

logger = logging.getLogger(__name__)

SKIPPED_LOCK_HELD = "Skipped: another full sync is in progress"


class SyncState(str, enum.Enum):
    IDLE = "idle"
    ACQUIRING_LOCK = "acquiring_lock"
    FETCHING = "fetching"
    TRANSFORMING = "transforming"
    UPSERTING = "upserting"
    COMPLETING = "completing"
    FAILED = "failed"


class CatalogSyncService:
    """
    Sync one provider's catalog into the catalog tables.

    Args:
        provider: Lowercase provider name
        client: Provider client (owned by the caller)
        transformer: Transformer for the same provider
        session_factory: Opens one session per unit of work
        redis_client: Redis client for the full-sync lock
        settings: Thresholds and batch sizes
    """

    def __init__(
        self,
        provider: str,
        client: ProviderClient,
        transformer: BundleTransformer,
        session_factory: async_sessionmaker,
        redis_client: redis.Redis,
        settings: Settings = default_settings,
    ):
        self.provider = provider
        self.client = client
        self.transformer = transformer
        self.session_factory = session_factory
        self.redis = redis_client
        self.settings = settings
        self._state = SyncState.IDLE

    @property
    def state(self) -> SyncState:
        return self._state

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    async def sync_full_catalog(self, job_id: Optional[str] = None) -> SyncResult:
        """
        Sync the whole provider catalog under the full-sync lock.

        Returns a skipped result (no exception) when another full sync holds
        the lock. Any other failure marks the job failed and is re-raised.
        """
        started = time.monotonic()
        job_id = await self._ensure_job(job_id, JobType.FULL_SYNC, priority=JobPriority.HIGH)

        self._state = SyncState.ACQUIRING_LOCK
        lock = DistributedLock(
            self.redis,
            full_sync_lock_key(self.provider),
            self.settings.FULL_SYNC_LOCK_TTL_SECONDS,
        )
        lock_result = await lock.acquire()

        if not lock_result.acquired:
            logger.warning(
                f"Full sync for {self.provider} skipped: {lock_result.error}",
                extra={"provider": self.provider, "job_id": job_id}
            )
            async with self.session_factory() as session:
                await SyncJobRepository(session).cancel_job(job_id, SKIPPED_LOCK_HELD)
            self._state = SyncState.IDLE
            return SyncResult(
                job_id=job_id,
                job_type=JobType.FULL_SYNC,
                provider=self.provider,
                skipped=True,
                skip_reason=SKIPPED_LOCK_HELD,
                duration_seconds=time.monotonic() - started,
            )

        try:
            await self._start_job(job_id)
            result = await self._run_pages(job_id, JobType.FULL_SYNC)

            self._state = SyncState.COMPLETING
            async with self.session_factory() as session:
                bundles = BundleRepository(session)
                total = await bundles.count_active_bundles(self.provider)
                groups = await bundles.list_bundle_groups(self.provider)

                metadata_repo = CatalogMetadataRepository(session, self.settings.SYNC_DUE_HOURS)
                summary = self._summary(result)
                if result.errors:
                    await metadata_repo.record_partial_sync(self.provider, total, groups, summary)
                else:
                    await metadata_repo.record_full_sync(self.provider, total, groups, summary)

            result.duration_seconds = time.monotonic() - started
            await self._complete_job(job_id, result)

            logger.info(
                f"Full sync for {self.provider} finished in {result.duration_seconds:.1f}s: "
                f"{result.processed} processed, {result.added} added, {result.updated} updated, "
                f"{result.rejected} rejected, {len(result.errors)} errors"
            )
            self._state = SyncState.IDLE
            return result

        except Exception as e:
            self._state = SyncState.FAILED
            await self._fail_job(job_id, e)
            raise

        finally:
            await lock_result.release()

    # ------------------------------------------------------------------
    # Scoped syncs
    # ------------------------------------------------------------------

    async def sync_bundle_group(self, bundle_group: str, job_id: Optional[str] = None) -> SyncResult:
        if not self.client.supports_groups:
            raise UnsupportedJobError(
                f"Provider {self.provider} does not support bundle group syncs",
                context={"provider": self.provider, "bundle_group": bundle_group}
            )

        job_id = await self._ensure_job(job_id, JobType.GROUP_SYNC, bundle_group=bundle_group)
        return await self._scoped_sync(
            job_id,
            JobType.GROUP_SYNC,
            CatalogFilters(bundle_group=bundle_group),
        )

    async def sync_country_bundles(self, country_id: str, job_id: Optional[str] = None) -> SyncResult:
        country_id = country_id.strip().upper()
        job_id = await self._ensure_job(job_id, JobType.COUNTRY_SYNC, country_id=country_id)
        return await self._scoped_sync(
            job_id,
            JobType.COUNTRY_SYNC,
            CatalogFilters(country_id=country_id),
        )

    async def _scoped_sync(self, job_id: str, job_type: JobType, filters: CatalogFilters) -> SyncResult:
        started = time.monotonic()
        try:
            await self._start_job(job_id)
            result = await self._run_pages(job_id, job_type, filters)

            self._state = SyncState.COMPLETING
            async with self.session_factory() as session:
                total = await BundleRepository(session).count_active_bundles(self.provider)
                await CatalogMetadataRepository(session, self.settings.SYNC_DUE_HOURS).record_partial_sync(
                    self.provider,
                    total,
                    metadata={**self._summary(result), "scope": filters.model_dump(exclude_none=True)},
                )

            result.duration_seconds = time.monotonic() - started
            await self._complete_job(job_id, result)
            self._state = SyncState.IDLE
            return result

        except Exception as e:
            self._state = SyncState.FAILED
            await self._fail_job(job_id, e)
            raise

    # ------------------------------------------------------------------
    # Metadata / health
    # ------------------------------------------------------------------

    async def check_api_health(self) -> ApiHealthStatus:
        """Probe the provider: healthy, degraded (empty catalog) or down (error)"""
        started = time.monotonic()
        details: Dict[str, Any] = {}

        try:
            healthy = await self.client.check_health()
            status = ApiHealthStatus.HEALTHY if healthy else ApiHealthStatus.DEGRADED
        except Exception as e:
            status = ApiHealthStatus.DOWN
            details["error"] = getattr(e, "message", None) or str(e)
            logger.warning(f"{self.provider} API health check failed: {details['error']}")

        details["response_time_ms"] = int((time.monotonic() - started) * 1000)

        async with self.session_factory() as session:
            await CatalogMetadataRepository(session, self.settings.SYNC_DUE_HOURS).update_api_health(
                self.provider, status, details
            )

        logger.info(f"{self.provider} API health: {status.value} ({details['response_time_ms']}ms)")
        return status

    async def refresh_metadata(self, job_id: Optional[str] = None) -> SyncResult:
        """Recount active bundles and groups, then probe provider health"""
        started = time.monotonic()
        job_id = await self._ensure_job(job_id, JobType.METADATA_SYNC, priority=JobPriority.LOW)

        try:
            await self._start_job(job_id)
            async with self.session_factory() as session:
                bundles = BundleRepository(session)
                total = await bundles.count_active_bundles(self.provider)
                groups = await bundles.list_bundle_groups(self.provider)
                await CatalogMetadataRepository(session, self.settings.SYNC_DUE_HOURS).refresh_totals(
                    self.provider, total, groups
                )

            health = await self.check_api_health()

            result = SyncResult(
                job_id=job_id,
                job_type=JobType.METADATA_SYNC,
                provider=self.provider,
                processed=total,
                duration_seconds=time.monotonic() - started,
                metadata={"total_bundles": total, "bundle_groups": len(groups), "api_health": health.value},
            )
            await self._complete_job(job_id, result)
            return result

        except Exception as e:
            await self._fail_job(job_id, e)
            raise

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def handle_stuck_jobs(self) -> int:
        async with self.session_factory() as session:
            return await SyncJobRepository(session).cancel_stuck_jobs(self.settings.STUCK_JOB_THRESHOLD_MINUTES)

    async def cleanup_old_jobs(self) -> int:
        async with self.session_factory() as session:
            return await SyncJobRepository(session).cleanup_old_jobs(self.settings.CLEANUP_OLD_JOBS_DAYS)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_pages(
        self,
        job_id: str,
        job_type: JobType,
        filters: Optional[CatalogFilters] = None,
    ) -> SyncResult:
        result = SyncResult(job_id=job_id, job_type=job_type, provider=self.provider)
        totals = UpsertResult()
        context = TransformContext()
        pages = 0

        self._state = SyncState.FETCHING
        async for page in self.client.iter_catalog_pages(filters):
            pages += 1

            self._state = SyncState.TRANSFORMING
            bundles = self.transformer.transform_all(page.bundles, context)
            result.processed += len(page.bundles)
            result.rejected += len(page.bundles) - len(bundles)

            self._state = SyncState.UPSERTING
            async with self.session_factory() as session:
                upsert = await BundleRepository(session, self.settings.UPSERT_BATCH_SIZE).upsert_bundles(bundles)
            totals.merge(upsert)

            async with self.session_factory() as session:
                await SyncJobRepository(session).update_job_progress(
                    job_id,
                    result.processed,
                    totals.added,
                    totals.updated,
                    metadata={"pages": pages, "rejected": result.rejected, "activated": totals.activated},
                )

            logger.info(
                f"{self.provider} page {page.page}: {len(page.bundles)} raw, {len(bundles)} valid, "
                f"{upsert.added} added, {upsert.updated} updated"
            )
            self._state = SyncState.FETCHING

        result.added = totals.added
        result.updated = totals.updated
        result.errors = totals.errors
        result.metadata = {"pages": pages, "activated": totals.activated}
        return result

    async def _ensure_job(self, job_id: Optional[str], job_type: JobType, **scope) -> str:
        if job_id:
            return job_id
        async with self.session_factory() as session:
            job = await SyncJobRepository(session).create_job(job_type, provider=self.provider, **scope)
        return job.id

    async def _start_job(self, job_id: str) -> None:
        async with self.session_factory() as session:
            await SyncJobRepository(session).start_job(job_id)

    async def _complete_job(self, job_id: str, result: SyncResult) -> None:
        async with self.session_factory() as session:
            await SyncJobRepository(session).complete_job(
                job_id,
                result.processed,
                result.added,
                result.updated,
                metadata=self._summary(result),
            )

    async def _fail_job(self, job_id: str, error: Exception) -> None:
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        async with self.session_factory() as session:
            await SyncJobRepository(session).fail_job(job_id, message)

    @staticmethod
    def _summary(result: SyncResult) -> Dict[str, Any]:
        return {
            "processed": result.processed,
            "added": result.added,
            "updated": result.updated,
            "rejected": result.rejected,
            "errors": result.errors[:20],
            "duration_seconds": round(result.duration_seconds, 2),
            **result.metadata,
        }
