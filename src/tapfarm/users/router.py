"""User endpoints under /api/v1/users."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from tapfarm.auth.dependencies import get_current_user
from tapfarm.db.models import User
from tapfarm.users.schemas import UserResponse

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


@router.get("/me", response_model=UserResponse)
async def get_profile(
    user: User = Depends(get_current_user),
) -> UserResponse:
    """Get own profile and points balance."""
    return UserResponse(
        telegram_id=user.telegram_id,
        username=user.username,
        referrer_id=user.referrer_id,
        points=user.points,
        created_at=user.created_at,
    )
