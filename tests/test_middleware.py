"""Middleware tests: request id, rate limiting, CORS, error handling."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient
from starlette.requests import Request

from tapfarm.middleware import rate_limit
from tapfarm.middleware.rate_limit import rate_limit_subject


def _fake_redis(counts: list[int]) -> MagicMock:
    """Redis whose pipeline reports the given INCR results in order."""
    pipe = MagicMock()
    pipe.execute = AsyncMock(side_effect=[[count, True] for count in counts])
    redis = MagicMock()
    redis.pipeline = MagicMock(return_value=pipe)
    return redis


def _request(headers: dict[str, str]) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/v1/farm/status",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": ("10.0.0.7", 5555),
    }
    return Request(scope)


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert len(response.headers["x-request-id"]) == 36  # UUID format


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_no_rate_limit_without_redis(client: AsyncClient) -> None:
    """Without Redis requests pass and carry no rate limit headers."""
    response = await client.get("/version")
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_rate_limit_headers(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(rate_limit, "get_redis", lambda: _fake_redis([1]))
    response = await client.get("/version")
    assert response.headers["x-ratelimit-limit"] == "100"
    assert response.headers["x-ratelimit-remaining"] == "99"


@pytest.mark.asyncio
async def test_rate_limit_blocks_excess(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """The 101st request in a window returns 429 with Retry-After."""
    monkeypatch.setattr(rate_limit, "get_redis", lambda: _fake_redis([101]))
    response = await client.get("/version")
    assert response.status_code == 429
    assert response.headers["retry-after"] == "60"
    assert response.json()["detail"] == "Rate limit exceeded. Try again later."


@pytest.mark.asyncio
async def test_rate_limit_fails_open_when_redis_down(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """An unreachable Redis lets the request through without limit headers."""
    from redis.exceptions import ConnectionError as RedisConnectionError

    pipe = MagicMock()
    pipe.execute = AsyncMock(side_effect=RedisConnectionError("Error 111 connecting to 127.0.0.1:1"))
    redis = MagicMock()
    redis.pipeline = MagicMock(return_value=pipe)
    monkeypatch.setattr(rate_limit, "get_redis", lambda: redis)

    response = await client.get("/version")
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers
    pipe.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_rate_limit_fails_open_on_unreachable_server(client: AsyncClient) -> None:
    """A real client pointed at a closed port behaves the same."""
    from tapfarm.redis_client import close_redis, init_redis

    await init_redis("redis://127.0.0.1:1/0")
    try:
        response = await client.get("/version")
    finally:
        await close_redis()
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_health_exempt_from_rate_limit(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    redis = _fake_redis([500])
    monkeypatch.setattr(rate_limit, "get_redis", lambda: redis)
    response = await client.get("/health")
    assert response.status_code == 200
    redis.pipeline.assert_not_called()


def test_rate_limit_keyed_by_telegram_user(init_data) -> None:
    request = _request({"Authorization": f"Telegram {init_data(4242)}"})
    assert rate_limit_subject(request) == "tg:4242"


def test_rate_limit_falls_back_to_ip() -> None:
    assert rate_limit_subject(_request({})) == "ip:10.0.0.7"
    assert rate_limit_subject(_request({"Authorization": "Telegram garbage"})) == "ip:10.0.0.7"


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    """Preflight from the Telegram web client is allowed with the auth header."""
    response = await client.options(
        "/api/v1/farm/status",
        headers={
            "Origin": "https://web.telegram.org",
            "Access-Control-Request-Method": "GET",
            "Access-Control-Request-Headers": "Authorization",
        },
    )
    assert response.headers["access-control-allow-origin"] == "https://web.telegram.org"


@pytest.mark.asyncio
async def test_404_returns_json(client: AsyncClient) -> None:
    """Unknown paths return 404 with JSON body."""
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.json()["detail"] == "Not Found"


@pytest.mark.asyncio
async def test_storage_error_returns_503() -> None:
    """Database failures are logged and answered with a generic 503."""
    from httpx import ASGITransport
    from sqlalchemy.exc import OperationalError

    from tapfarm.main import create_app

    app = create_app()

    @app.get("/boom")
    async def boom() -> None:
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/boom")
    assert response.status_code == 503
    assert response.json() == {"detail": "Storage temporarily unavailable"}
