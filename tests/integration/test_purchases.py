"""Tests for store purchase grants and the Redis purchase listener."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tapfarm.arcade.energy import get_or_create_player, get_player_energy, record_energy_use
from tapfarm.database import get_session_factory
from tapfarm.db.models import ArcadePlayer, EnergyUse
from tapfarm.store.listener import PurchaseListener
from tapfarm.store.service import PurchaseKind, apply_purchase
from tapfarm.users.service import get_or_create_user

PLAYER = 4004
CHANNEL = "pubsub:purchase_succeeded"
T0 = datetime(2026, 3, 3, 8, 0, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def drained_player(db_session: AsyncSession) -> AsyncSession:
    """A player who has spent all three energy units."""
    await get_or_create_user(db_session, PLAYER)
    await get_or_create_player(db_session, PLAYER)
    for i in range(3):
        await record_energy_use(db_session, PLAYER, T0 + timedelta(minutes=i))
    await db_session.commit()
    return db_session


async def _skin(db: AsyncSession) -> int | None:
    result = await db.execute(
        select(ArcadePlayer.ball_skin_id)
        .where(ArcadePlayer.player_id == PLAYER)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


def _mock_redis(messages: list[dict]) -> tuple[AsyncMock, AsyncMock]:
    mock_redis = AsyncMock()
    mock_pubsub = AsyncMock()
    pending = list(messages)

    async def fake_get_message(**kwargs):
        if pending:
            return pending.pop(0)
        await asyncio.sleep(0.01)
        return None

    mock_pubsub.get_message = fake_get_message
    mock_pubsub.subscribe = AsyncMock()
    mock_pubsub.unsubscribe = AsyncMock()
    mock_pubsub.close = AsyncMock()
    mock_redis.pubsub = MagicMock(return_value=mock_pubsub)
    return mock_redis, mock_pubsub


class TestApplyPurchase:
    @pytest.mark.asyncio
    async def test_energy_recharge_restores_budget(self, drained_player):
        assert (await get_player_energy(drained_player, PLAYER, T0 + timedelta(minutes=5))).remaining == 0
        await apply_purchase(drained_player, PurchaseKind.ENERGY_RECHARGE, PLAYER)
        assert (await get_player_energy(drained_player, PLAYER, T0 + timedelta(minutes=5))).remaining == 3

    @pytest.mark.asyncio
    async def test_ball_skin_sets_skin(self, drained_player):
        await apply_purchase(drained_player, PurchaseKind.BALL_SKIN, PLAYER, item_kind_id=7)
        assert await _skin(drained_player) == 7

    @pytest.mark.asyncio
    async def test_ball_skin_requires_item(self, drained_player):
        with pytest.raises(ValueError):
            await apply_purchase(drained_player, PurchaseKind.BALL_SKIN, PLAYER)


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_recharge_message_granted(self, drained_player):
        listener = PurchaseListener(AsyncMock(), CHANNEL, session_factory=get_session_factory())
        ok = await listener.handle_message(json.dumps({"kind": "energy_recharge", "user_id": PLAYER}).encode())
        assert ok is True

        count = await drained_player.execute(select(func.count()).select_from(EnergyUse))
        assert count.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_skin_message_with_string_ids(self, drained_player):
        listener = PurchaseListener(AsyncMock(), CHANNEL, session_factory=get_session_factory())
        ok = await listener.handle_message(
            json.dumps({"kind": "ball_skin", "user_id": str(PLAYER), "item_kind_id": "3"})
        )
        assert ok is True
        assert await _skin(drained_player) == 3

    @pytest.mark.asyncio
    async def test_skin_message_without_item_not_granted(self, drained_player):
        listener = PurchaseListener(AsyncMock(), CHANNEL, session_factory=get_session_factory())
        ok = await listener.handle_message(json.dumps({"kind": "ball_skin", "user_id": PLAYER}))
        assert ok is False
        assert await _skin(drained_player) is None

    @pytest.mark.parametrize(
        "data",
        [
            b"not json {{{",
            json.dumps({"kind": "gold_ball", "user_id": 1}),
            json.dumps({"kind": "energy_recharge"}),
            json.dumps({"kind": "energy_recharge", "user_id": "abc"}),
            json.dumps(["energy_recharge"]),
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_messages_skipped(self, data):
        factory = MagicMock()
        listener = PurchaseListener(AsyncMock(), CHANNEL, session_factory=factory)
        assert await listener.handle_message(data) is False
        factory.assert_not_called()


class TestListenerLifecycle:
    @pytest.mark.asyncio
    async def test_listener_dispatches_and_stops(self):
        payload = json.dumps({"kind": "energy_recharge", "user_id": PLAYER})
        mock_redis, mock_pubsub = _mock_redis([{"type": "message", "channel": CHANNEL, "data": payload}])
        listener = PurchaseListener(mock_redis, CHANNEL)

        with patch("tapfarm.store.listener.apply_purchase", new=AsyncMock()) as mock_apply, \
                patch("tapfarm.store.listener.get_session_factory") as mock_factory:
            mock_factory.return_value = MagicMock(return_value=AsyncMock())

            async def stop_after_delay():
                await asyncio.sleep(0.1)
                await listener.stop()

            await asyncio.gather(listener.start(), stop_after_delay())

        mock_pubsub.subscribe.assert_awaited_once_with(CHANNEL)
        mock_apply.assert_awaited_once()
        assert mock_apply.call_args.args[1:] == (PurchaseKind.ENERGY_RECHARGE, PLAYER, None)
        mock_pubsub.unsubscribe.assert_awaited_once()
        mock_pubsub.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_listener_gives_up_when_redis_unavailable(self):
        from redis.exceptions import ConnectionError as RedisConnectionError

        mock_redis, mock_pubsub = _mock_redis([])
        mock_pubsub.subscribe = AsyncMock(side_effect=RedisConnectionError("refused"))
        listener = PurchaseListener(mock_redis, CHANNEL)

        await asyncio.wait_for(listener.start(), timeout=1)

        mock_pubsub.close.assert_awaited_once()
        mock_pubsub.unsubscribe.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_listener_exits_when_connection_drops(self):
        """A dropped connection ends the loop cleanly instead of killing the task."""
        from redis.exceptions import ConnectionError as RedisConnectionError

        mock_redis, mock_pubsub = _mock_redis([])
        mock_pubsub.get_message = AsyncMock(side_effect=RedisConnectionError("Connection closed by server."))
        mock_pubsub.unsubscribe = AsyncMock(side_effect=RedisConnectionError("Connection closed by server."))
        listener = PurchaseListener(mock_redis, CHANNEL)

        await asyncio.wait_for(listener.start(), timeout=1)

        mock_pubsub.get_message.assert_awaited_once()
        mock_pubsub.close.assert_awaited_once()
        assert listener._running is False


class TestUnknownBuyer:
    @pytest.mark.asyncio
    async def test_skin_for_unknown_user_skipped(self, db_session):
        listener = PurchaseListener(AsyncMock(), CHANNEL, session_factory=get_session_factory())
        ok = await listener.handle_message(json.dumps({"kind": "ball_skin", "user_id": 987654, "item_kind_id": 2}))
        assert ok is False

        count = await db_session.execute(select(func.count()).select_from(ArcadePlayer))
        assert count.scalar_one() == 0
