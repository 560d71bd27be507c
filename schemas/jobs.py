"""
Pydantic schemas for queue payloads and sync outcomes
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import JobType, JobPriority


class SyncJobPayload(BaseModel):
    """
    Data carried by a queued sync job.

    sync_job_id points at a pending catalog_sync_jobs row created by the
    admin facade; the worker reuses it when it is still pending.
    """
    type: JobType
    provider: str
    priority: JobPriority = JobPriority.NORMAL
    triggered_by: str = "manual"
    bundle_group: Optional[str] = None
    country_id: Optional[str] = None
    sync_job_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    requested_at: datetime = Field(default_factory=datetime.utcnow)


class UpsertResult(BaseModel):
    """Outcome of one BundleRepository.upsert_bundles call"""
    added: int = 0
    updated: int = 0
    activated: int = 0
    errors: List[str] = Field(default_factory=list)

    def merge(self, other: "UpsertResult") -> None:
        self.added += other.added
        self.updated += other.updated
        self.activated += other.activated
        self.errors.extend(other.errors)


class SyncResult(BaseModel):
    """Outcome of a sync handler, also stored as the queue job result"""
    job_id: Optional[str] = None
    job_type: JobType
    provider: str
    processed: int = 0
    added: int = 0
    updated: int = 0
    rejected: int = 0
    errors: List[str] = Field(default_factory=list)
    skipped: bool = False
    skip_reason: Optional[str] = None
    duration_seconds: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors
