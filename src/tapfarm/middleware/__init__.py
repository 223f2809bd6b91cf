"""HTTP middleware and exception handlers."""

from fastapi import FastAPI

from tapfarm.config import Settings
from tapfarm.middleware.cors import setup_cors
from tapfarm.middleware.error_handler import setup_error_handlers
from tapfarm.middleware.logging import setup_logging
from tapfarm.middleware.rate_limit import RateLimitMiddleware
from tapfarm.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging and register middleware.

    Starlette runs middleware in reverse-add order. CORS is added last so its
    headers also land on 429 responses; the request id wraps rate limiting so
    rejected requests are logged with an id too.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
