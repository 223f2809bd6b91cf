"""FastAPI application factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from tapfarm.admin.router import router as admin_router
from tapfarm.arcade.router import router as arcade_router
from tapfarm.config import get_settings
from tapfarm.database import close_db, init_db
from tapfarm.farm.router import router as farm_router
from tapfarm.health.router import router as health_router
from tapfarm.middleware import setup_middleware
from tapfarm.redis_client import close_redis, get_redis, init_redis
from tapfarm.store.listener import PurchaseListener
from tapfarm.users.router import router as users_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Grant store purchases published by the payment webhook
    listener = PurchaseListener(get_redis(), settings.purchase_channel)
    listener_task = asyncio.create_task(listener.start())
    logger.info("app_started", environment=settings.environment, version=settings.app_version)

    yield

    await listener.stop()
    listener_task.cancel()
    try:
        await listener_task
    except asyncio.CancelledError:
        pass
    finally:
        await close_db()
        await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Tapfarm API",
        description="Backend API for the Tapfarm Telegram mini-app: farm harvests and the arcade ball game",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(users_router)
    app.include_router(farm_router)
    app.include_router(arcade_router)
    app.include_router(admin_router)

    return app


app = create_app()
