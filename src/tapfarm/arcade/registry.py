"""Registry of live arcade sessions.

The lock covers insert, remove and lookup only. Session fields are owned by
the task serving that connection and are not protected here.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from tapfarm.arcade.session import ArcadeSession

logger = structlog.get_logger()


class ArcadeRegistry:
    """Maps player id to the session of their most recent connection."""

    def __init__(self) -> None:
        self._sessions: dict[int, ArcadeSession] = {}
        self._lock = asyncio.Lock()

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def register(self, session: ArcadeSession) -> None:
        """Accept the WebSocket and track the session."""
        await session.websocket.accept()
        async with self._lock:
            replaced = self._sessions.get(session.player_id)
            self._sessions[session.player_id] = session
        logger.info("arcade_connected", player_id=session.player_id, replaced=replaced is not None)

    async def unregister(self, session: ArcadeSession) -> bool:
        """Forget the session. A newer connection for the same player is left alone."""
        async with self._lock:
            if self._sessions.get(session.player_id) is not session:
                return False
            del self._sessions[session.player_id]
        logger.info(
            "arcade_disconnected",
            player_id=session.player_id,
            duration_seconds=round(time.time() - session.connected_at, 1),
        )
        return True

    async def get(self, player_id: int) -> ArcadeSession | None:
        async with self._lock:
            return self._sessions.get(player_id)

    def get_stats(self) -> dict:
        """Get connection statistics."""
        sessions = list(self._sessions.values())
        oldest = min((s.connected_at for s in sessions), default=None)
        return {
            "active_sessions": len(sessions),
            "playing": sum(1 for s in sessions if s.is_playing),
            "longest_connection_seconds": round(time.time() - oldest, 1) if oldest is not None else 0.0,
        }


# Global singleton
registry = ArcadeRegistry()
