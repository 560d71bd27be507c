"""
API endpoint tests for the admin sync routes
"""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_admin
from api.main import app
from core.exceptions import SyncAlreadyInProgressError
from models.base import JobStatus, JobType
from schemas.api import (
    OperationStatusResponse,
    QueueStats,
    StuckJobsCleanupResponse,
    SyncHistoryResponse,
    SyncJobSummary,
    SyncStats,
    SyncStatusResponse,
    TriggerSyncResponse,
)


@pytest.fixture
def admin():
    return AsyncMock()


@pytest.fixture
def client(admin):
    """Test client with the admin service overridden (no lifespan, no runtime)"""
    app.dependency_overrides[get_admin] = lambda: admin
    yield TestClient(app)
    app.dependency_overrides.clear()


def job_summary(**kwargs):
    values = {
        "id": "job-1",
        "job_type": JobType.FULL_SYNC,
        "status": JobStatus.RUNNING,
        "priority": "high",
        "provider": "esimgo",
        "metadata": {"triggered_by": "manual"},
        "created_at": datetime(2024, 1, 15, 10, 30),
    }
    values.update(kwargs)
    return SyncJobSummary(**values)


def test_trigger_full_sync_accepted(client, admin):
    admin.trigger_full_sync.return_value = TriggerSyncResponse(
        job_id="job-1", priority=1, queue_job_id="7", message="Full sync for esimgo queued"
    )

    response = client.post("/sync/full")

    assert response.status_code == 202
    data = response.json()
    assert data["job_id"] == "job-1"
    assert data["status"] == "queued"
    assert data["priority"] == 1
    admin.trigger_full_sync.assert_awaited_once_with(provider=None, triggered_by="manual")
    assert "X-Request-ID" in response.headers


def test_trigger_full_sync_with_body(client, admin):
    admin.trigger_full_sync.return_value = TriggerSyncResponse(job_id="job-2", priority=1)

    response = client.post("/sync/full", json={"provider": "maya"})

    assert response.status_code == 202
    admin.trigger_full_sync.assert_awaited_once_with(provider="maya", triggered_by="manual")


def test_trigger_conflict_returns_409(client, admin):
    admin.trigger_full_sync.side_effect = SyncAlreadyInProgressError(
        "A full sync is already in progress", context={"job_id": "job-1"}
    )

    response = client.post("/sync/full", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["error_type"] == "SyncAlreadyInProgressError"
    assert detail["message"] == "A full sync is already in progress"
    assert detail["context"]["job_id"] == "job-1"
    assert response.headers["X-Request-ID"] == "req-123"


def test_trigger_group_and_country(client, admin):
    admin.trigger_group_sync.return_value = TriggerSyncResponse(job_id="g", priority=3)
    admin.trigger_country_sync.return_value = TriggerSyncResponse(job_id="c", priority=4)

    group = client.post("/sync/group", json={"bundle_group": "Standard Fixed"})
    country = client.post("/sync/country", json={"country_id": "FR"})

    assert group.status_code == 202
    assert country.status_code == 202
    admin.trigger_group_sync.assert_awaited_once_with("Standard Fixed")
    admin.trigger_country_sync.assert_awaited_once_with("FR", provider=None)


def test_trigger_validation_errors(client, admin):
    assert client.post("/sync/group", json={"bundle_group": ""}).status_code == 422
    assert client.post("/sync/country", json={"country_id": "FRANCE"}).status_code == 422
    admin.trigger_country_sync.assert_not_awaited()


def test_sync_status(client, admin):
    admin.get_sync_status.return_value = SyncStatusResponse(
        queue=QueueStats(waiting=1, active=1, total=2),
        sync=[SyncStats(provider="esimgo", total_bundles=120, bundle_groups=["Standard Fixed"])],
        active_jobs=[job_summary()],
    )

    response = client.get("/sync/status")

    assert response.status_code == 200
    data = response.json()
    assert data["queue"]["waiting"] == 1
    assert data["sync"][0]["total_bundles"] == 120
    assert data["active_jobs"][0]["id"] == "job-1"
    assert data["active_jobs"][0]["metadata"] == {"triggered_by": "manual"}


def test_sync_history_passes_filters(client, admin):
    admin.get_sync_history.return_value = SyncHistoryResponse(
        jobs=[job_summary(status=JobStatus.FAILED, error_message="Request timeout")],
        total=1,
        limit=10,
        offset=0,
    )

    response = client.get("/sync/history?status=failed&job_type=FULL_SYNC&limit=10")

    assert response.status_code == 200
    assert response.json()["jobs"][0]["error_message"] == "Request timeout"
    admin.get_sync_history.assert_awaited_once_with(
        status=JobStatus.FAILED, job_type=JobType.FULL_SYNC, limit=10, offset=0
    )


def test_sync_history_rejects_bad_limit(client):
    assert client.get("/sync/history?limit=0").status_code == 422
    assert client.get("/sync/history?limit=501").status_code == 422


def test_pause_resume_and_cleanup(client, admin):
    admin.pause_sync_operations.return_value = OperationStatusResponse(status="paused")
    admin.resume_sync_operations.return_value = OperationStatusResponse(status="resumed")
    admin.force_cleanup_stuck_jobs.return_value = StuckJobsCleanupResponse(
        cancelled_count=2, message="Cancelled 2 stuck jobs"
    )

    assert client.post("/sync/pause").json()["status"] == "paused"
    assert client.post("/sync/resume").json()["status"] == "resumed"
    assert client.post("/sync/stuck-jobs/cleanup").json()["cancelled_count"] == 2


def test_root_endpoint(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["endpoints"]["sync"] == "/sync"
