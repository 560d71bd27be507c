"""
Pydantic schemas for data validation and serialization.

Schemas:
    bundle: Raw provider records (eSIM Go, Maya, Airalo) and the canonical
            CatalogBundle written to the catalog tables
    jobs: Queue payloads and sync/upsert outcomes
    api: Admin and health endpoint request/response models

Usage:
    from schemas.bundle import CatalogBundle, EsimGoRawBundle
    from schemas.jobs import SyncJobPayload, SyncResult
    from schemas.api import QueueStats, HealthResponse

Validation:
    Raw models accept whatever the provider sends (unknown keys ignored,
    everything optional) so the transformer can decide what to reject.
    CatalogBundle enforces the persisted invariants.
"""

from schemas.bundle import CatalogBundle, EsimGoRawBundle, MayaRawBundle, AiraloRawPackage
from schemas.jobs import SyncJobPayload, SyncResult, UpsertResult
from schemas.api import QueueStats, HealthResponse

__all__ = [
    "CatalogBundle",
    "EsimGoRawBundle",
    "MayaRawBundle",
    "AiraloRawPackage",
    "SyncJobPayload",
    "SyncResult",
    "UpsertResult",
    "QueueStats",
    "HealthResponse",
]
