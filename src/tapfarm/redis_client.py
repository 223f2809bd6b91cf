"""Redis client shared by rate limiting and the purchase listener."""

import redis.asyncio as redis

_client: redis.Redis | None = None


async def init_redis(url: str) -> None:
    """Create the pooled Redis client."""
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )


async def close_redis() -> None:
    """Close the Redis client and its pool."""
    global _client  # noqa: PLW0603
    if _client:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """Get the Redis client.

    Raises:
        RuntimeError: If init_redis() has not been called.
    """
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client

