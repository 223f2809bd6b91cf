"""Arcade game loop: one task per WebSocket connection.

Each client event re-reads the player's energy from storage before acting.
Domain problems (no energy, bad message) are reported as ``error`` messages
and the loop keeps reading; only transport failures or a client close end it.
A rally that has not reached ``ball_dropped`` when the connection goes away is
discarded without crediting points or consuming energy.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from fastapi import WebSocket, WebSocketDisconnect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tapfarm.arcade.energy import (
    energy_cooldown,
    get_player_energy,
    next_available_energy,
    record_energy_use,
)
from tapfarm.arcade.messages import (
    EnergyRechargeMessage,
    ErrorMessage,
    EventType,
    OutgoingMessage,
)
from tapfarm.arcade.registry import ArcadeRegistry
from tapfarm.arcade.session import ArcadeSession
from tapfarm.config import get_settings
from tapfarm.database import get_session_factory
from tapfarm.time_utils import to_unix, utcnow
from tapfarm.users.service import UserNotFoundError, add_points

logger = structlog.get_logger()

OUT_OF_ENERGY = "out of energy"
_PERSIST_ATTEMPTS = 3


class ArcadeGame:
    """Serves arcade connections and applies client events to their sessions."""

    def __init__(
        self,
        registry: ArcadeRegistry,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        base_hit_reward: int | None = None,
        cooldown: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.registry = registry
        self._session_factory = session_factory
        self._base_hit_reward = base_hit_reward
        self._cooldown = cooldown
        self._clock = clock

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    @property
    def base_hit_reward(self) -> int:
        if self._base_hit_reward is not None:
            return self._base_hit_reward
        return get_settings().arcade_base_hit_reward

    @property
    def cooldown(self) -> timedelta:
        return self._cooldown or energy_cooldown()

    async def serve(self, websocket: WebSocket, player_id: int) -> None:
        """Run the event loop for one connection until it closes."""
        session = ArcadeSession(websocket=websocket, player_id=player_id)
        await self.registry.register(session)
        try:
            while True:
                raw = await websocket.receive_text()
                await self.handle_message(session, raw)
        except WebSocketDisconnect:
            if session.is_playing:
                logger.info(
                    "arcade_rally_discarded",
                    player_id=player_id,
                    score=session.total_score,
                    hits=session.hit_counter,
                )
        except Exception:
            logger.exception("arcade_connection_error", player_id=player_id)
        finally:
            await self.registry.unregister(session)

    async def handle_message(self, session: ArcadeSession, raw: str) -> None:
        """Decode one client message and apply it."""
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            await self._send(session, ErrorMessage(message="Invalid JSON"))
            return

        event_name = msg.get("type") if isinstance(msg, dict) else None
        try:
            event = EventType(event_name)
        except ValueError:
            await self._send(session, ErrorMessage(message=f"Unknown event type: {event_name}"))
            return

        try:
            await self.handle_event(session, event)
        except UserNotFoundError:
            logger.warning("arcade_player_not_found", player_id=session.player_id)
            await self._send(session, ErrorMessage(message="player not found"))
        except SQLAlchemyError:
            logger.exception("arcade_storage_error", player_id=session.player_id, event=event.value)
            await self._send(session, ErrorMessage(message="internal error"))

    async def handle_event(self, session: ArcadeSession, event: EventType) -> None:
        """Apply a decoded event to the session and push the resulting state."""
        now = self._clock()
        async with self.session_factory() as db:
            energy = await get_player_energy(db, session.player_id, now, self.cooldown)
        session.refresh_energy(energy)

        if event is EventType.PLAYER_STATE:
            await self._send(session, session.player_state())

        elif event is EventType.GAME_START:
            if not session.is_ready_to_play:
                await self._send_out_of_energy(session, now)
                return
            if not session.is_playing:
                session.start_rally()
                logger.debug("arcade_rally_started", player_id=session.player_id)
                await self._send(session, session.game_state())

        elif event is EventType.BALL_HIT:
            if not session.is_ready_to_play:
                await self._send_out_of_energy(session, now)
                return
            if session.is_playing:
                session.register_hit(self.base_hit_reward)
                await self._send(session, session.game_state())

        elif event is EventType.BALL_DROPPED:
            if not session.is_ready_to_play:
                await self._send_out_of_energy(session, now)
                return
            if session.is_playing:
                await self._persist_rally(session, now)
                session.end_rally()
                logger.info(
                    "arcade_rally_finished",
                    player_id=session.player_id,
                    score=session.total_score,
                    hits=session.hit_counter,
                )
                await self._send(session, session.game_over())

        elif event is EventType.ENERGY_RECHARGE:
            # Restocking happens through the purchase flow; this only acknowledges
            await self._send(session, EnergyRechargeMessage())

    async def _persist_rally(self, session: ArcadeSession, now: datetime) -> None:
        """Credit the score and consume one energy unit in a single transaction."""
        for attempt in range(1, _PERSIST_ATTEMPTS + 1):
            async with self.session_factory() as db:
                try:
                    await add_points(db, session.player_id, session.total_score)
                    await record_energy_use(db, session.player_id, now)
                    await db.commit()
                    return
                except IntegrityError:
                    await db.rollback()
                    if attempt == _PERSIST_ATTEMPTS:
                        raise
                    logger.warning("arcade_energy_use_conflict", player_id=session.player_id, attempt=attempt)

    async def _send_out_of_energy(self, session: ArcadeSession, now: datetime) -> None:
        async with self.session_factory() as db:
            available_at = await next_available_energy(db, session.player_id, now, self.cooldown)
        await self._send(
            session,
            ErrorMessage(message=OUT_OF_ENERGY, next_available_energy_unix=to_unix(available_at)),
        )

    async def _send(self, session: ArcadeSession, message: OutgoingMessage) -> None:
        await session.websocket.send_json(message.to_wire())
