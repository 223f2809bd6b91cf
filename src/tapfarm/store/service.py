"""Grants for store purchases confirmed by the payment gateway."""

from __future__ import annotations

import logging
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from tapfarm.arcade.energy import get_or_create_player, reset_energy

logger = logging.getLogger(__name__)


class PurchaseKind(str, Enum):
    ENERGY_RECHARGE = "energy_recharge"
    BALL_SKIN = "ball_skin"


async def apply_purchase(
    db: AsyncSession,
    kind: PurchaseKind,
    user_id: int,
    item_kind_id: int | None = None,
) -> None:
    """
    Grant the purchased item.

    Raises:
        ValueError: If a ball skin purchase has no item id.
    """
    if kind is PurchaseKind.ENERGY_RECHARGE:
        await reset_energy(db, user_id)
        return

    if kind is PurchaseKind.BALL_SKIN:
        if item_kind_id is None:
            raise ValueError("ball skin purchase without item_kind_id")
        player = await get_or_create_player(db, user_id)
        player.ball_skin_id = item_kind_id
        await db.commit()
        logger.info("Ball skin %d granted to player %d", item_kind_id, user_id)
