"""CORS configuration for the Telegram web app frontend."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tapfarm.config import Settings


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the mini-app origins to call the API with Telegram auth headers."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-Id", "X-Admin-Key"],
        expose_headers=["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit"],
    )
