"""Redis-backed fixed window rate limiting, keyed per Telegram user."""

import time
from typing import Any

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from tapfarm.auth.telegram import InitDataError, parse_init_data
from tapfarm.redis_client import get_redis

logger = structlog.get_logger()

_EXEMPT_PATHS = frozenset({"/health", "/ready"})
_SCHEME = "Telegram "


def rate_limit_subject(request: Request) -> str:
    """Bucket name for a request: the Telegram user id if present, else the client IP.

    The init data is only parsed here; the auth dependency verifies it.
    """
    authorization = request.headers.get("authorization", "")
    if authorization.startswith(_SCHEME):
        try:
            return f"tg:{parse_init_data(authorization[len(_SCHEME):]).id}"
        except InitDataError:
            pass
    return f"ip:{request.client.host if request.client else 'unknown'}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Limit requests per user (or IP) per window using Redis counters."""

    def __init__(self, app: Any, requests_per_window: int = 100, window_seconds: int = 60) -> None:  # noqa: ANN401
        super().__init__(app)
        self.requests_per_window = requests_per_window
        self.window_seconds = window_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Count the request, return 429 once the window's budget is spent."""
        if request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        window = int(time.time()) // self.window_seconds
        rate_key = f"ratelimit:{rate_limit_subject(request)}:{window}"

        try:
            redis = get_redis()
        except RuntimeError:
            # Redis not initialized; serve without limiting
            return await call_next(request)

        pipe = redis.pipeline()
        pipe.incr(rate_key)
        pipe.expire(rate_key, self.window_seconds + 1)
        try:
            results: list[Any] = await pipe.execute()
        except (RedisError, OSError) as e:
            # Fail open while Redis is unreachable
            logger.warning("rate_limit_unavailable", error=str(e))
            return await call_next(request)

        current_count: int = results[0]
        if current_count > self.requests_per_window:
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={
                    "Retry-After": str(self.window_seconds),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Limit": str(self.requests_per_window),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.requests_per_window - current_count))
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_window)
        return response
