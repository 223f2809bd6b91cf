"""Health endpoint tests."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    """GET /health returns 200 with healthy status."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_readiness_without_redis(client: AsyncClient) -> None:
    """Database up, Redis not initialized: degraded but serving."""
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["redis"].startswith("error:")
    assert data["arcade"] == {"active_sessions": 0, "playing": 0, "longest_connection_seconds": 0.0}


@pytest.mark.asyncio
async def test_readiness_all_ok(client: AsyncClient) -> None:
    """GET /ready reports ready when Redis answers the ping."""
    redis = AsyncMock()
    with patch("tapfarm.health.router.get_redis", return_value=redis):
        response = await client.get("/ready")
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"] == {"database": "ok", "redis": "ok"}
    redis.ping.assert_awaited_once()


@pytest.mark.asyncio
async def test_version(client: AsyncClient) -> None:
    """GET /version returns version and environment."""
    response = await client.get("/version")
    assert response.status_code == 200
    data = response.json()
    assert data["version"] == "0.1.0"
    assert "environment" in data
