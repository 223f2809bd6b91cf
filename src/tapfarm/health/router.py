"""Liveness, readiness and version endpoints."""

from fastapi import APIRouter, Depends
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tapfarm.arcade.registry import registry
from tapfarm.config import get_settings
from tapfarm.database import get_session
from tapfarm.redis_client import get_redis

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness check; 200 while the process is up."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness check.

    The database is required for every endpoint. Redis only backs rate
    limiting and purchase events, so without it the API is ``degraded``.
    """
    checks: dict[str, str] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as exc:
        checks["database"] = f"error: {exc}"

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except (RedisError, RuntimeError, OSError) as exc:
        checks["redis"] = f"error: {exc}"

    if checks["database"] != "ok":
        status = "unavailable"
    elif checks["redis"] != "ok":
        status = "degraded"
    else:
        status = "ready"
    return {"status": status, "checks": checks, "arcade": registry.get_stats()}


@router.get("/version")
async def version() -> dict[str, str]:
    """API version and deployment environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
