"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import JobType, JobStatus, JobPriority


# ============================================================================
# Queue / Sync Stats
# ============================================================================

class QueueStats(BaseModel):
    """Counts per queue state"""
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: bool = False
    total: int = 0


class SyncStats(BaseModel):
    """Catalog metadata summary for one provider"""
    provider: str
    last_full_sync: Optional[datetime] = None
    next_scheduled_sync: Optional[datetime] = None
    total_bundles: int = 0
    bundle_groups: List[str] = Field(default_factory=list)
    api_health_status: str = "healthy"
    sync_due: bool = True


class SyncJobSummary(BaseModel):
    """Sync job row as returned by the admin API"""
    id: str
    job_type: JobType
    status: JobStatus
    priority: JobPriority
    provider: Optional[str] = None
    bundle_group: Optional[str] = None
    country_id: Optional[str] = None
    bundles_processed: int = 0
    bundles_added: int = 0
    bundles_updated: int = 0
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="job_metadata")
    queue_job_id: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        populate_by_name = True


# ============================================================================
# Admin Requests
# ============================================================================

class TriggerFullSyncRequest(BaseModel):
    provider: Optional[str] = None
    triggered_by: str = "manual"


class TriggerGroupSyncRequest(BaseModel):
    bundle_group: str = Field(..., min_length=1)


class TriggerCountrySyncRequest(BaseModel):
    country_id: str = Field(..., min_length=2, max_length=3)
    provider: Optional[str] = None


# ============================================================================
# Admin Responses
# ============================================================================

class TriggerSyncResponse(BaseModel):
    """Returned when a sync has been queued"""
    job_id: str
    status: str = "queued"
    priority: int
    queue_job_id: Optional[str] = None
    message: Optional[str] = None


class SyncStatusResponse(BaseModel):
    queue: QueueStats
    sync: List[SyncStats] = Field(default_factory=list)
    active_jobs: List[SyncJobSummary] = Field(default_factory=list)


class SyncHistoryResponse(BaseModel):
    jobs: List[SyncJobSummary] = Field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0


class OperationStatusResponse(BaseModel):
    status: str
    message: Optional[str] = None


class StuckJobsCleanupResponse(BaseModel):
    cancelled_count: int
    message: str


# ============================================================================
# Health Check
# ============================================================================

class HealthChecks(BaseModel):
    redis: bool = False
    database: bool = False
    queue: bool = False


class HealthResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="healthy or unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    checks: HealthChecks
    queue: Optional[QueueStats] = None

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "checks": {"redis": True, "database": True, "queue": True},
                "queue": {
                    "waiting": 0,
                    "active": 1,
                    "completed": 12,
                    "failed": 0,
                    "delayed": 0,
                    "paused": False,
                    "total": 13,
                },
            }
        }
