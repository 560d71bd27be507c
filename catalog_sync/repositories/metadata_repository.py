"""
Per-provider catalog metadata: sync timestamps, totals, API health
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from models.base import ApiHealthStatus
from models.metadata import CatalogMetadata
from schemas.api import SyncStats

logger = logging.getLogger(__name__)

SYNC_VERSION = "2.0"


class CatalogMetadataRepository:
    """Read and update catalog_metadata rows (one per provider, created lazily)"""

    def __init__(self, db_session: AsyncSession, sync_due_hours: int = 168):
        self.db = db_session
        self.sync_due_hours = sync_due_hours

    async def get_metadata(self, provider: str) -> CatalogMetadata:
        result = await self.db.execute(
            select(CatalogMetadata)
            .where(CatalogMetadata.provider == provider)
            .execution_options(populate_existing=True)
        )
        metadata = result.scalar_one_or_none()
        if metadata is not None:
            return metadata

        metadata = CatalogMetadata(
            provider=provider,
            total_bundles=0,
            bundle_groups=[],
            api_health_status=ApiHealthStatus.HEALTHY,
            sync_version=SYNC_VERSION,
            extra_metadata={},
        )
        self.db.add(metadata)
        try:
            await self.db.commit()
        except IntegrityError:
            # Created concurrently by another process
            await self.db.rollback()
            result = await self.db.execute(select(CatalogMetadata).where(CatalogMetadata.provider == provider))
            return result.scalar_one()

        await self.db.refresh(metadata)
        logger.info(f"Created catalog metadata for provider {provider}")
        return metadata

    async def record_full_sync(
        self,
        provider: str,
        total_bundles: int,
        bundle_groups: List[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CatalogMetadata:
        """Full, error-free sync: moves last_full_sync and schedules the next one"""
        row = await self.get_metadata(provider)
        now = datetime.utcnow()

        row.last_full_sync = now
        row.next_scheduled_sync = now + timedelta(hours=self.sync_due_hours)
        row.total_bundles = total_bundles
        row.bundle_groups = list(bundle_groups)
        row.sync_version = SYNC_VERSION
        row.extra_metadata = {**(row.extra_metadata or {}), **(metadata or {}), "last_sync_type": "full"}
        row.updated_at = now
        await self.db.commit()

        logger.info(f"Recorded full sync for {provider}: {total_bundles} bundles, {len(bundle_groups)} groups")
        return row

    async def record_partial_sync(
        self,
        provider: str,
        total_bundles: int,
        bundle_groups: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CatalogMetadata:
        """Partial sync (scoped, or full with errors); last_full_sync is left alone"""
        row = await self.get_metadata(provider)
        now = datetime.utcnow()

        row.total_bundles = total_bundles
        if bundle_groups is not None:
            row.bundle_groups = list(bundle_groups)
        row.extra_metadata = {
            **(row.extra_metadata or {}),
            **(metadata or {}),
            "last_sync_type": "partial",
            "last_partial_sync": now.isoformat(),
        }
        row.updated_at = now
        await self.db.commit()
        return row

    async def refresh_totals(self, provider: str, total_bundles: int, bundle_groups: List[str]) -> CatalogMetadata:
        """Recount without touching sync timestamps"""
        row = await self.get_metadata(provider)
        now = datetime.utcnow()

        row.total_bundles = total_bundles
        row.bundle_groups = list(bundle_groups)
        row.extra_metadata = {**(row.extra_metadata or {}), "last_metadata_refresh": now.isoformat()}
        row.updated_at = now
        await self.db.commit()
        return row

    async def update_api_health(
        self,
        provider: str,
        status: ApiHealthStatus,
        details: Optional[Dict[str, Any]] = None,
    ) -> CatalogMetadata:
        row = await self.get_metadata(provider)
        now = datetime.utcnow()

        row.api_health_status = status
        row.extra_metadata = {
            **(row.extra_metadata or {}),
            "last_health_check": now.isoformat(),
            "health_details": details or {},
        }
        row.updated_at = now
        await self.db.commit()
        return row

    async def is_sync_due(self, provider: str, threshold_hours: Optional[int] = None) -> bool:
        """
        Due when:
        - the provider was never fully synced
        - next_scheduled_sync has passed
        - last_full_sync is at least threshold_hours old
        """
        threshold_hours = threshold_hours if threshold_hours is not None else self.sync_due_hours
        row = await self.get_metadata(provider)
        now = datetime.utcnow()

        if row.last_full_sync is None:
            return True
        if row.next_scheduled_sync is not None and now >= row.next_scheduled_sync:
            return True
        return now - row.last_full_sync >= timedelta(hours=threshold_hours)

    async def get_sync_stats(self, provider: str) -> SyncStats:
        row = await self.get_metadata(provider)
        health = row.api_health_status
        return SyncStats(
            provider=provider,
            last_full_sync=row.last_full_sync,
            next_scheduled_sync=row.next_scheduled_sync,
            total_bundles=row.total_bundles or 0,
            bundle_groups=row.bundle_groups or [],
            api_health_status=health.value if isinstance(health, ApiHealthStatus) else str(health),
            sync_due=await self.is_sync_due(provider),
        )
