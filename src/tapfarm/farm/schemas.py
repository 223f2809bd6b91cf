"""Pydantic response models for farm endpoints."""

from __future__ import annotations

from pydantic import BaseModel


class HarvestResponse(BaseModel):
    success: bool = True
    started_at_unix: int | None = None


class FarmStatusResponse(BaseModel):
    is_in_progress: bool
    started_at_unix: int | None = None
    point_reward: int
    is_previous_claimed: bool
    seconds_until_harvest: float = 0.0


class ClaimResponse(BaseModel):
    points_earned: int
