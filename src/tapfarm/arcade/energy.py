"""Arcade energy accounting.

Energy is derived, not stored as a counter:

    remaining = total_energy - count(energy uses younger than the cooldown)

Every consumed unit is its own row with its own timestamp, so units come back
one at a time on a rolling basis. Rows are keyed (player_id, energy_number)
with a per-player increasing sequence, so two connections of the same player
can never record the same unit twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tapfarm.config import get_settings
from tapfarm.db.models import ArcadePlayer, EnergyUse, User
from tapfarm.time_utils import as_utc, hours, utcnow
from tapfarm.users.service import UserNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnergyStatus:
    total: int
    remaining: int


def energy_cooldown() -> timedelta:
    return hours(get_settings().arcade_energy_cooldown_hours)


async def get_or_create_player(db: AsyncSession, player_id: int) -> ArcadePlayer:
    """Get the arcade player row, granting the default energy budget on first use.

    Raises:
        UserNotFoundError: No ledger account exists for the player.
    """
    player = await db.get(ArcadePlayer, player_id)
    if player is not None:
        return player

    player = ArcadePlayer(player_id=player_id, total_energy=get_settings().arcade_default_total_energy)
    db.add(player)
    try:
        await db.commit()
    except IntegrityError:
        # Another connection of the same player created it first
        await db.rollback()
        player = await db.get(ArcadePlayer, player_id)
        if player is None:
            if await db.get(User, player_id) is None:
                raise UserNotFoundError(player_id) from None
            raise
        return player
    logger.info("Arcade player %d created with %d energy", player_id, player.total_energy)
    return player


async def get_player_energy(
    db: AsyncSession,
    player_id: int,
    now: datetime | None = None,
    cooldown: timedelta | None = None,
) -> EnergyStatus:
    """Total energy and the units not consumed within the cooldown window."""
    now = now or utcnow()
    cooldown = cooldown or energy_cooldown()
    player = await get_or_create_player(db, player_id)

    result = await db.execute(
        select(func.count())
        .select_from(EnergyUse)
        .where(EnergyUse.player_id == player_id, EnergyUse.used_at > now - cooldown)
    )
    used = result.scalar_one()
    return EnergyStatus(total=player.total_energy, remaining=player.total_energy - used)


async def next_available_energy(
    db: AsyncSession,
    player_id: int,
    now: datetime | None = None,
    cooldown: timedelta | None = None,
) -> datetime | None:
    """When the oldest unit still cooling down comes back, or None if none is."""
    now = now or utcnow()
    cooldown = cooldown or energy_cooldown()
    result = await db.execute(
        select(func.min(EnergyUse.used_at)).where(
            EnergyUse.player_id == player_id,
            EnergyUse.used_at > now - cooldown,
        )
    )
    oldest = result.scalar_one_or_none()
    if oldest is None:
        return None
    return as_utc(oldest) + cooldown


async def record_energy_use(
    db: AsyncSession,
    player_id: int,
    now: datetime | None = None,
) -> EnergyUse:
    """
    Append one consumed unit. Runs inside the caller's transaction.

    A concurrent insert for the same sequence number surfaces as IntegrityError
    at flush; the caller retries the whole transaction.
    """
    now = now or utcnow()
    result = await db.execute(
        select(func.coalesce(func.max(EnergyUse.energy_number), 0)).where(EnergyUse.player_id == player_id)
    )
    use = EnergyUse(player_id=player_id, energy_number=result.scalar_one() + 1, used_at=now)
    db.add(use)
    await db.flush()
    return use


async def reset_energy(db: AsyncSession, player_id: int) -> int:
    """Delete all recorded uses, restoring the full budget. Returns rows deleted."""
    result = await db.execute(delete(EnergyUse).where(EnergyUse.player_id == player_id))
    await db.commit()
    logger.info("Energy reset for player %d (%d uses cleared)", player_id, result.rowcount)
    return result.rowcount
