"""
SQLAlchemy ORM models for the catalog tables.

Models:
    base: Declarative base, portable column types and shared enums
          (Provider, JobType, JobStatus, JobPriority, ApiHealthStatus)
    catalog: Providers, canonical bundles and bundle-country links
    sync_job: Sync job audit trail
    metadata: Per-provider catalog metadata (last sync, health)

Database Schema:
    Production runs on PostgreSQL (JSONB columns, BIGINT keys). The same
    models also create on SQLite, which the test suite uses.

Usage:
    from models.catalog import CatalogProvider, CatalogBundleRecord, CatalogBundleCountry
    from models.sync_job import CatalogSyncJob
    from models.base import JobType, JobStatus

Relationships:
    - CatalogProvider -> CatalogBundleRecord (one-to-many)
    - CatalogBundleRecord -> CatalogBundleCountry (one-to-many)
"""

from models.base import Base
from models.catalog import CatalogProvider, CatalogBundleRecord, CatalogBundleCountry
from models.sync_job import CatalogSyncJob
from models.metadata import CatalogMetadata

__all__ = [
    "Base",
    "CatalogProvider",
    "CatalogBundleRecord",
    "CatalogBundleCountry",
    "CatalogSyncJob",
    "CatalogMetadata",
]
