from sqlalchemy import Column, Integer, String, Enum, DateTime
from datetime import datetime
from models.base import Base, JSONType, ApiHealthStatus


class CatalogMetadata(Base):
    """
    Per-provider catalog bookkeeping read by the scheduler.

    Design:
    - One row per provider, created lazily on first read
    - last_full_sync only moves on complete (error-free) full syncs, so a
      partial sync leaves the provider "due"
    """
    __tablename__ = "catalog_metadata"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(50), nullable=False, unique=True)

    last_full_sync = Column(DateTime, nullable=True)
    next_scheduled_sync = Column(DateTime, nullable=True)
    total_bundles = Column(Integer, default=0, nullable=False)
    bundle_groups = Column(JSONType, nullable=True)
    api_health_status = Column(Enum(ApiHealthStatus), default=ApiHealthStatus.HEALTHY, nullable=False)
    sync_version = Column(String(20), nullable=True)

    extra_metadata = Column("metadata", JSONType, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
