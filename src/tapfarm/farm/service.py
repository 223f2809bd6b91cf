"""Farm harvest cycles: start, status and claim.

State machine per player (one row in farm_sessions):

    Idle --start--> InProgress --cooldown elapses--> ReadyToClaim --claim--> Idle

ReadyToClaim is not stored as its own flag. A cycle is complete when the
reward is unclaimed and either ``started_at`` was already cleared by a status
read or the cooldown has elapsed since ``started_at``. Every operation derives
completion from those columns, and every transition is one conditional UPDATE
whose affected-row count decides the outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tapfarm.config import get_settings
from tapfarm.db.models import FarmSession
from tapfarm.time_utils import as_utc, hours, utcnow
from tapfarm.users.service import UserNotFoundError, add_points

logger = logging.getLogger(__name__)


class FarmError(ValueError):
    """Harvest operation attempted in the wrong state."""


class SessionInProgressError(FarmError):
    def __init__(self) -> None:
        super().__init__("cannot start harvest: farming already in progress")


class RewardNotClaimedError(FarmError):
    def __init__(self) -> None:
        super().__init__("cannot start harvest: previous reward must be claimed first")


class NoSessionFoundError(FarmError):
    def __init__(self) -> None:
        super().__init__("no farming session found")


class AlreadyClaimedError(FarmError):
    def __init__(self) -> None:
        super().__init__("reward already claimed")


class NotYetCompleteError(FarmError):
    """Claim attempted before the cooldown elapsed."""

    def __init__(self, remaining: timedelta) -> None:
        self.remaining = remaining
        shown = timedelta(seconds=int(remaining.total_seconds()))
        super().__init__(f"farming session not yet complete, {shown} remaining")


@dataclass(frozen=True)
class FarmStatus:
    """Read view of a player's farm session."""

    is_in_progress: bool
    started_at: datetime | None
    point_reward: int
    is_previous_claimed: bool
    seconds_until_harvest: float = 0.0

    @property
    def can_claim(self) -> bool:
        return not self.is_in_progress and not self.is_previous_claimed


def _cooldown(cooldown: timedelta | None) -> timedelta:
    return cooldown if cooldown is not None else hours(get_settings().farm_cooldown_hours)


def _reward(reward: int | None) -> int:
    return reward if reward is not None else get_settings().farm_point_reward


def _remaining(started_at: datetime | None, now: datetime, cooldown: timedelta) -> timedelta:
    """Time left in the cycle; zero once complete or when nothing is running."""
    if started_at is None:
        return timedelta(0)
    return max(timedelta(0), cooldown - (now - as_utc(started_at)))


async def _load(db: AsyncSession, player_id: int) -> FarmSession | None:
    result = await db.execute(
        select(FarmSession)
        .where(FarmSession.player_id == player_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def start_harvest(
    db: AsyncSession,
    player_id: int,
    now: datetime | None = None,
    cooldown: timedelta | None = None,
) -> FarmStatus:
    """
    Start a new harvest cycle.

    Raises:
        SessionInProgressError: A cycle is still running.
        RewardNotClaimedError: The last cycle finished but its reward was not claimed.
    """
    now = now or utcnow()
    cooldown = _cooldown(cooldown)

    result = await db.execute(
        update(FarmSession)
        .where(
            FarmSession.player_id == player_id,
            FarmSession.is_in_progress.is_(False),
            FarmSession.is_previous_claimed.is_(True),
        )
        .values(is_in_progress=True, started_at=now, is_previous_claimed=False)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        await db.commit()
        logger.info("Farm harvest started for player %d", player_id)
        return FarmStatus(True, now, _reward(None), False, cooldown.total_seconds())

    session = await _load(db, player_id)
    if session is None:
        db.add(
            FarmSession(
                player_id=player_id,
                is_in_progress=True,
                started_at=now,
                is_previous_claimed=False,
            )
        )
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            # Lost the race against a concurrent first start
            if await _load(db, player_id) is not None:
                raise SessionInProgressError() from None
            raise
        logger.info("Farm harvest started for new player %d", player_id)
        return FarmStatus(True, now, _reward(None), False, cooldown.total_seconds())

    # Rollback expires the instance; keep what the diagnosis needs
    running = session.is_in_progress and _remaining(session.started_at, now, cooldown) > timedelta(0)
    await db.rollback()
    if running:
        raise SessionInProgressError()
    raise RewardNotClaimedError()


async def get_status(
    db: AsyncSession,
    player_id: int,
    now: datetime | None = None,
    cooldown: timedelta | None = None,
) -> FarmStatus:
    """
    Read the farm session, settling an expired cycle first.

    An in-progress cycle whose cooldown has elapsed is flipped to
    not-in-progress with ``started_at`` cleared; the reward stays unclaimed.
    """
    now = now or utcnow()
    cooldown = _cooldown(cooldown)
    reward = _reward(None)

    result = await db.execute(
        update(FarmSession)
        .where(
            FarmSession.player_id == player_id,
            FarmSession.is_in_progress.is_(True),
            FarmSession.started_at <= now - cooldown,
        )
        .values(is_in_progress=False, started_at=None)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.debug("Farm cycle for player %d completed, awaiting claim", player_id)
    await db.commit()

    session = await _load(db, player_id)
    if session is None:
        return FarmStatus(
            is_in_progress=False,
            started_at=None,
            point_reward=reward,
            is_previous_claimed=True,
        )

    started_at = as_utc(session.started_at) if session.started_at is not None else None
    return FarmStatus(
        is_in_progress=session.is_in_progress,
        started_at=started_at,
        point_reward=reward,
        is_previous_claimed=session.is_previous_claimed,
        seconds_until_harvest=_remaining(started_at, now, cooldown).total_seconds(),
    )


async def claim_points(
    db: AsyncSession,
    player_id: int,
    now: datetime | None = None,
    cooldown: timedelta | None = None,
    reward: int | None = None,
) -> int:
    """
    Claim the reward of a completed cycle and credit it to the points ledger.

    Only one of several concurrent claims can match the conditional update.

    Returns:
        The number of points credited.

    Raises:
        NoSessionFoundError: The player never started a cycle.
        NotYetCompleteError: The cooldown has not elapsed; carries the remaining time.
        AlreadyClaimedError: The reward for this cycle was already collected.
        UserNotFoundError: The player has no ledger account.
    """
    now = now or utcnow()
    cooldown = _cooldown(cooldown)
    reward = _reward(reward)

    result = await db.execute(
        update(FarmSession)
        .where(
            FarmSession.player_id == player_id,
            FarmSession.is_previous_claimed.is_(False),
            or_(
                FarmSession.started_at.is_(None),
                FarmSession.started_at <= now - cooldown,
            ),
        )
        .values(is_in_progress=False, is_previous_claimed=True, started_at=None)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        try:
            await add_points(db, player_id, reward)
        except UserNotFoundError:
            await db.rollback()
            raise
        await db.commit()
        logger.info("Farm reward of %d points claimed by player %d", reward, player_id)
        return reward

    await db.rollback()
    session = await _load(db, player_id)
    if session is None:
        raise NoSessionFoundError()
    if session.is_previous_claimed:
        raise AlreadyClaimedError()
    raise NotYetCompleteError(_remaining(session.started_at, now, cooldown))
