"""Arcade WebSocket endpoint."""

from fastapi import APIRouter, Query, WebSocket
import structlog

from tapfarm.arcade.game import ArcadeGame
from tapfarm.arcade.registry import registry
from tapfarm.auth.dependencies import authenticate_init_data
from tapfarm.auth.telegram import InitDataError
from tapfarm.config import get_settings
from tapfarm.database import get_session_factory
from tapfarm.users.service import get_or_create_user

logger = structlog.get_logger()

router = APIRouter()

arcade = ArcadeGame(registry)


@router.websocket("/api/v1/ws/{telegram_id}")
async def arcade_endpoint(
    websocket: WebSocket,
    telegram_id: int,
    init_data: str | None = Query(default=None),
) -> None:
    """Arcade game session for one player; protocol in tapfarm.arcade.messages.

    Outside auth debug mode the ``init_data`` query parameter must carry
    Telegram init data signed for this bot and issued to ``telegram_id``.
    """
    settings = get_settings()
    username: str | None = None
    try:
        if init_data is not None:
            tg_user = authenticate_init_data(init_data, settings)
            if tg_user.id != telegram_id:
                raise InitDataError("init data belongs to another user")
            username = tg_user.username
        elif not settings.telegram_auth_debug:
            raise InitDataError("init data is required")
    except InitDataError as e:
        logger.info("arcade_auth_failed", telegram_id=telegram_id, reason=str(e))
        await websocket.close(code=4001, reason=f"Authentication failed: {e}")
        return

    async with get_session_factory()() as db:
        await get_or_create_user(db, telegram_id, username=username)
        await db.commit()

    await arcade.serve(websocket, telegram_id)
