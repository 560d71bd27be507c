from sqlalchemy import BigInteger, Integer, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()

# JSONB on PostgreSQL, generic JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


# ============================================================================
# ENUMS
# ============================================================================

class Provider(str, enum.Enum):
    """Upstream catalog providers"""
    ESIMGO = "esimgo"
    MAYA = "maya"
    AIRALO = "airalo"


class JobType(str, enum.Enum):
    """Sync job types"""
    FULL_SYNC = "FULL_SYNC"
    GROUP_SYNC = "GROUP_SYNC"
    COUNTRY_SYNC = "COUNTRY_SYNC"
    METADATA_SYNC = "METADATA_SYNC"


class JobStatus(str, enum.Enum):
    """Sync job status"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_JOB_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)
TERMINAL_JOB_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobPriority(str, enum.Enum):
    """Sync job priority"""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class ApiHealthStatus(str, enum.Enum):
    """Provider API health"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"
