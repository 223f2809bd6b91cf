"""User directory and points ledger."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select, update

from tapfarm.config import get_settings
from tapfarm.db.models import User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


class UserNotFoundError(LookupError):
    """Raised when a Telegram user has no account."""

    def __init__(self, telegram_id: int) -> None:
        super().__init__(f"User {telegram_id} not found")
        self.telegram_id = telegram_id


async def get_user(db: AsyncSession, telegram_id: int) -> User:
    """Get a user by Telegram ID.

    Raises:
        UserNotFoundError: If the user does not exist.
    """
    user = await db.get(User, telegram_id)
    if user is None:
        raise UserNotFoundError(telegram_id)
    return user


async def get_or_create_user(
    db: AsyncSession,
    telegram_id: int,
    username: str | None = None,
    referrer_id: int | None = None,
) -> tuple[User, bool]:
    """
    Get existing user or register a new one.

    The referrer is only recorded on creation and only if it is a known user
    other than the new one.

    Returns:
        Tuple of (user, created) where created is True if a new user was made.
    """
    now = datetime.now(timezone.utc)
    user = await db.get(User, telegram_id)
    if user is not None:
        user.last_auth_at = now
        if username and user.username != username:
            user.username = username
        await db.flush()
        return user, False

    if referrer_id is not None and (referrer_id == telegram_id or await db.get(User, referrer_id) is None):
        referrer_id = None

    user = User(
        telegram_id=telegram_id,
        username=username,
        referrer_id=referrer_id,
        points=0,
        created_at=now,
        last_auth_at=now,
    )
    db.add(user)
    await db.flush()
    logger.info("user_created", telegram_id=telegram_id, referrer_id=referrer_id)
    return user, True


def referral_bonus(amount: int, percent: int | None = None) -> int:
    """Points credited to the referrer when a referred user earns `amount`."""
    if percent is None:
        percent = get_settings().referral_bonus_percent
    if amount <= 0 or percent <= 0:
        return 0
    return math.ceil(amount * percent / 100)


async def add_points(db: AsyncSession, telegram_id: int, amount: int) -> None:
    """
    Credit points to a user and the referral bonus to their referrer.

    Runs inside the caller's transaction; the caller commits.

    Raises:
        UserNotFoundError: If the user does not exist.
    """
    result = await db.execute(select(User.referrer_id).where(User.telegram_id == telegram_id))
    row = result.one_or_none()
    if row is None:
        raise UserNotFoundError(telegram_id)

    await db.execute(
        update(User)
        .where(User.telegram_id == telegram_id)
        .values(points=User.points + amount)
    )

    referrer_id = row.referrer_id
    bonus = referral_bonus(amount)
    if referrer_id is not None and bonus > 0:
        await db.execute(
            update(User)
            .where(User.telegram_id == referrer_id)
            .values(points=User.points + bonus)
        )

    logger.debug("points_added", telegram_id=telegram_id, amount=amount, referrer_id=referrer_id, bonus=bonus)
