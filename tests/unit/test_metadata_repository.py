"""
Unit tests for catalog metadata
"""

from datetime import datetime, timedelta

import pytest

from catalog_sync.repositories import CatalogMetadataRepository
from models.base import ApiHealthStatus


@pytest.mark.asyncio
async def test_metadata_created_lazily(db_session):
    repo = CatalogMetadataRepository(db_session)

    row = await repo.get_metadata("esimgo")
    again = await repo.get_metadata("esimgo")

    assert row.id == again.id
    assert row.total_bundles == 0
    assert row.api_health_status == ApiHealthStatus.HEALTHY
    assert row.sync_version == "2.0"


@pytest.mark.asyncio
async def test_never_synced_provider_is_due(db_session):
    assert await CatalogMetadataRepository(db_session).is_sync_due("maya") is True


@pytest.mark.asyncio
async def test_full_sync_schedules_next(db_session):
    repo = CatalogMetadataRepository(db_session, sync_due_hours=168)

    row = await repo.record_full_sync("esimgo", 120, ["Standard Fixed"], {"processed": 130})

    assert row.total_bundles == 120
    assert row.bundle_groups == ["Standard Fixed"]
    assert row.next_scheduled_sync - row.last_full_sync == timedelta(hours=168)
    assert row.extra_metadata["last_sync_type"] == "full"
    assert await repo.is_sync_due("esimgo") is False


@pytest.mark.asyncio
async def test_sync_due_after_threshold(db_session):
    repo = CatalogMetadataRepository(db_session)
    row = await repo.record_full_sync("esimgo", 10, [])
    row.last_full_sync = datetime.utcnow() - timedelta(hours=200)
    row.next_scheduled_sync = None
    await db_session.commit()

    assert await repo.is_sync_due("esimgo", threshold_hours=168) is True
    assert await repo.is_sync_due("esimgo", threshold_hours=300) is False


@pytest.mark.asyncio
async def test_partial_sync_keeps_last_full_sync(db_session):
    repo = CatalogMetadataRepository(db_session)

    row = await repo.record_partial_sync("maya", 42, metadata={"scope": {"country_id": "FR"}})

    assert row.last_full_sync is None
    assert row.total_bundles == 42
    assert row.extra_metadata["last_sync_type"] == "partial"
    assert await repo.is_sync_due("maya") is True


@pytest.mark.asyncio
async def test_api_health_and_stats(db_session):
    repo = CatalogMetadataRepository(db_session)
    await repo.record_full_sync("airalo", 7, ["Merhaba"])

    await repo.update_api_health("airalo", ApiHealthStatus.DOWN, {"error": "timeout"})
    stats = await repo.get_sync_stats("airalo")

    assert stats.provider == "airalo"
    assert stats.api_health_status == "down"
    assert stats.total_bundles == 7
    assert stats.bundle_groups == ["Merhaba"]
    assert stats.sync_due is False


@pytest.mark.asyncio
async def test_refresh_totals_leaves_sync_timestamps(db_session):
    repo = CatalogMetadataRepository(db_session)
    synced = await repo.record_full_sync("esimgo", 10, [])
    last_full_sync = synced.last_full_sync

    row = await repo.refresh_totals("esimgo", 12, ["Standard Fixed"])

    assert row.total_bundles == 12
    assert row.last_full_sync == last_full_sync
    assert "last_metadata_refresh" in row.extra_metadata
