from sqlalchemy import Column, String, Integer, Enum, DateTime, Text, Index
from datetime import datetime
import uuid
from models.base import Base, JSONType, JobType, JobStatus, JobPriority


def _new_job_id() -> str:
    return str(uuid.uuid4())


class CatalogSyncJob(Base):
    """
    Durable audit trail of every sync attempt.

    Purpose:
    - Observability of queued, running and finished syncs
    - Advisory "is there already an active job of this scope" check
    - Stuck-job detection (running rows older than a threshold)

    Lifecycle:
    pending -> running -> completed | failed | cancelled
    Terminal transitions only apply to rows that are still pending/running.
    """
    __tablename__ = "catalog_sync_jobs"

    id = Column(String(36), primary_key=True, default=_new_job_id)

    job_type = Column(Enum(JobType), nullable=False, index=True)
    status = Column(Enum(JobStatus), default=JobStatus.PENDING, nullable=False, index=True)
    priority = Column(Enum(JobPriority), default=JobPriority.NORMAL, nullable=False)

    # Scope
    provider = Column(String(50), nullable=True, index=True)
    bundle_group = Column(String(200), nullable=True)
    country_id = Column(String(10), nullable=True)

    # Counters
    bundles_processed = Column(Integer, default=0, nullable=False)
    bundles_added = Column(Integer, default=0, nullable=False)
    bundles_updated = Column(Integer, default=0, nullable=False)

    # Error tracking
    error_message = Column(Text, nullable=True)
    job_metadata = Column("metadata", JSONType, nullable=True)

    # Queue linkage
    queue_job_id = Column(String(64), nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_sync_jobs_type_status", "job_type", "status"),
        Index("idx_sync_jobs_status_started", "status", "started_at"),
    )
