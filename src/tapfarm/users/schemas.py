"""Request/response schemas for user endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class UserResponse(BaseModel):
    telegram_id: int
    username: str | None = None
    referrer_id: int | None = None
    points: int
    created_at: datetime | None = None
