"""
Catalog sync engine.

Pulls eSIM bundle catalogs from upstream providers, normalizes them and
upserts them into the catalog tables, coordinated through a Redis-backed
queue and a per-provider full-sync lock.

Modules:
    providers: Upstream HTTP clients (eSIM Go, Maya, Airalo)
    transformers: Raw bundle -> CatalogBundle
    repositories: Bundle, sync job and metadata persistence
    lock: Redis distributed lock
    service: Per-provider sync orchestration
    queue: Durable job queue and typed producers
    registry: (job type, provider) -> handler routing
    worker: Queue consumer
    scheduler: Periodic housekeeping (APScheduler)
    admin: Trigger/status facade used by the API and scheduler
    runtime: Wiring with explicit start()/close()
"""
