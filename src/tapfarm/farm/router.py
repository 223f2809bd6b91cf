"""Farm minigame API endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from tapfarm.auth.dependencies import get_current_user
from tapfarm.database import get_session
from tapfarm.db.models import User
from tapfarm.farm.schemas import ClaimResponse, FarmStatusResponse, HarvestResponse
from tapfarm.farm.service import FarmError, claim_points, get_status, start_harvest
from tapfarm.time_utils import to_unix
from tapfarm.users.service import UserNotFoundError

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/farm", tags=["Farm"])


@router.post("/harvest", response_model=HarvestResponse)
async def harvest(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> HarvestResponse:
    """Start a harvest cycle."""
    # A rejected start rolls back the shared session and expires `user`
    telegram_id = user.telegram_id
    try:
        status = await start_harvest(db, telegram_id)
    except FarmError as e:
        logger.info("farm_harvest_rejected", telegram_id=telegram_id, reason=str(e))
        raise HTTPException(status_code=400, detail=str(e)) from e
    return HarvestResponse(success=True, started_at_unix=to_unix(status.started_at))


@router.get("/status", response_model=FarmStatusResponse)
async def status(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> FarmStatusResponse:
    """Current harvest cycle state; settles an expired cycle."""
    farm = await get_status(db, user.telegram_id)
    return FarmStatusResponse(
        is_in_progress=farm.is_in_progress,
        started_at_unix=to_unix(farm.started_at),
        point_reward=farm.point_reward,
        is_previous_claimed=farm.is_previous_claimed,
        seconds_until_harvest=farm.seconds_until_harvest,
    )


@router.patch("/claim", response_model=ClaimResponse)
async def claim(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ClaimResponse:
    """Collect the reward of a completed cycle."""
    telegram_id = user.telegram_id
    try:
        points = await claim_points(db, telegram_id)
    except FarmError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    logger.info("farm_reward_claimed", telegram_id=telegram_id, points=points)
    return ClaimResponse(points_earned=points)
