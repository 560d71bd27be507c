"""
API endpoint tests for /health
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from api.dependencies import get_db, get_queue_manager, get_redis
from api.main import app
from schemas.api import QueueStats


@pytest.fixture
def deps():
    db = AsyncMock()
    redis_client = AsyncMock()
    queue_manager = MagicMock()
    queue_manager.get_queue_stats = AsyncMock(return_value=QueueStats(waiting=3, completed=10, total=13))
    return db, redis_client, queue_manager


@pytest.fixture
def client(deps):
    db, redis_client, queue_manager = deps

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: redis_client
    app.dependency_overrides[get_queue_manager] = lambda: queue_manager
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health_all_up(client, deps):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["checks"] == {"redis": True, "database": True, "queue": True}
    assert data["queue"]["waiting"] == 3


def test_health_redis_down(client, deps):
    _, redis_client, queue_manager = deps
    redis_client.ping.side_effect = RedisConnectionError("connection refused")

    response = client.get("/health")

    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "unhealthy"
    assert data["checks"]["redis"] is False
    assert data["checks"]["database"] is True
    assert data["queue"] is None
    queue_manager.get_queue_stats.assert_not_awaited()


def test_health_database_down(client, deps):
    db, _, _ = deps
    db.execute.side_effect = OSError("database unreachable")

    response = client.get("/health")

    assert response.status_code == 503
    assert response.json()["checks"]["database"] is False


def test_health_queue_stats_failure_is_not_fatal(client, deps):
    _, _, queue_manager = deps
    queue_manager.get_queue_stats.side_effect = RuntimeError("stats failed")

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["checks"]["queue"] is False
