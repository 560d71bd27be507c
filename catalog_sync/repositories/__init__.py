"""
Database repositories for the catalog tables.

Each repository wraps one AsyncSession; callers open a session per unit of
work and construct the repository on it.
"""

from catalog_sync.repositories.bundle_repository import BundleRepository
from catalog_sync.repositories.sync_job_repository import SyncJobRepository
from catalog_sync.repositories.metadata_repository import CatalogMetadataRepository

__all__ = ["BundleRepository", "SyncJobRepository", "CatalogMetadataRepository"]
