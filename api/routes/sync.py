"""
Admin sync endpoints: trigger, status, history, pause/resume, stuck jobs
"""

from typing import Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
import logging

from api.dependencies import get_admin
from catalog_sync.admin import SyncAdminService
from core.exceptions import SyncAlreadyInProgressError
from models.base import JobStatus, JobType
from schemas.api import (
    OperationStatusResponse,
    StuckJobsCleanupResponse,
    SyncHistoryResponse,
    SyncStatusResponse,
    TriggerCountrySyncRequest,
    TriggerFullSyncRequest,
    TriggerGroupSyncRequest,
    TriggerSyncResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"])


def _conflict(request: Request, e: SyncAlreadyInProgressError) -> HTTPException:
    request_id = getattr(request.state, "request_id", None)
    logger.info(f"[{request_id}] Sync conflict: {e.message}")
    return HTTPException(status_code=409, detail=e.to_dict())


@router.post("/full", response_model=TriggerSyncResponse, status_code=202)
async def trigger_full_sync(
    request: Request,
    body: Optional[TriggerFullSyncRequest] = Body(None),
    admin: SyncAdminService = Depends(get_admin),
):
    body = body or TriggerFullSyncRequest()
    try:
        return await admin.trigger_full_sync(provider=body.provider, triggered_by=body.triggered_by)
    except SyncAlreadyInProgressError as e:
        raise _conflict(request, e)


@router.post("/group", response_model=TriggerSyncResponse, status_code=202)
async def trigger_group_sync(
    request: Request,
    body: TriggerGroupSyncRequest,
    admin: SyncAdminService = Depends(get_admin),
):
    try:
        return await admin.trigger_group_sync(body.bundle_group)
    except SyncAlreadyInProgressError as e:
        raise _conflict(request, e)


@router.post("/country", response_model=TriggerSyncResponse, status_code=202)
async def trigger_country_sync(
    request: Request,
    body: TriggerCountrySyncRequest,
    admin: SyncAdminService = Depends(get_admin),
):
    try:
        return await admin.trigger_country_sync(body.country_id, provider=body.provider)
    except SyncAlreadyInProgressError as e:
        raise _conflict(request, e)


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(admin: SyncAdminService = Depends(get_admin)):
    return await admin.get_sync_status()


@router.get("/history", response_model=SyncHistoryResponse)
async def get_sync_history(
    status: Optional[JobStatus] = Query(None, description="Filter by job status"),
    job_type: Optional[JobType] = Query(None, description="Filter by job type"),
    limit: int = Query(50, ge=1, le=500, description="Page size"),
    offset: int = Query(0, ge=0, description="Rows to skip"),
    admin: SyncAdminService = Depends(get_admin),
):
    return await admin.get_sync_history(status=status, job_type=job_type, limit=limit, offset=offset)


@router.post("/pause", response_model=OperationStatusResponse)
async def pause_sync(admin: SyncAdminService = Depends(get_admin)):
    return await admin.pause_sync_operations()


@router.post("/resume", response_model=OperationStatusResponse)
async def resume_sync(admin: SyncAdminService = Depends(get_admin)):
    return await admin.resume_sync_operations()


@router.post("/stuck-jobs/cleanup", response_model=StuckJobsCleanupResponse)
async def cleanup_stuck_jobs(admin: SyncAdminService = Depends(get_admin)):
    return await admin.force_cleanup_stuck_jobs()
