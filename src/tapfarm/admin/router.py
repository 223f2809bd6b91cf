"""Admin endpoints under /api/v1/admin."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tapfarm.arcade.energy import reset_energy
from tapfarm.arcade.registry import registry
from tapfarm.auth.dependencies import require_admin_key
from tapfarm.database import get_session
from tapfarm.users.service import get_user

logger = structlog.get_logger()

router = APIRouter(
    prefix="/api/v1/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin_key)],
)


@router.delete("/{telegram_id}/reset-energy")
async def reset_player_energy(
    telegram_id: int,
    db: AsyncSession = Depends(get_session),
) -> dict[str, object]:
    """Restore a player's full arcade energy."""
    await get_user(db, telegram_id)
    cleared = await reset_energy(db, telegram_id)
    logger.info("admin_energy_reset", telegram_id=telegram_id, records_deleted=cleared)
    return {
        "message": "energy reset successful",
        "telegram_id": telegram_id,
        "records_deleted": cleared,
    }


@router.get("/arcade/stats")
async def arcade_stats() -> dict:
    """Live arcade connection statistics."""
    return registry.get_stats()
