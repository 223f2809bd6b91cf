"""FastAPI authentication dependencies."""

from __future__ import annotations

import hmac

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from tapfarm.auth.telegram import InitDataError, TelegramUser, parse_init_data, verify_init_data
from tapfarm.config import Settings, get_settings
from tapfarm.database import get_session
from tapfarm.db.models import User
from tapfarm.users.service import get_or_create_user

_SCHEME = "Telegram "


def authenticate_init_data(init_data: str, settings: Settings) -> TelegramUser:
    """Verify init data, or only parse it when auth debug mode is on.

    Raises:
        InitDataError: On any verification failure.
    """
    if settings.telegram_auth_debug:
        return parse_init_data(init_data)
    return verify_init_data(
        init_data,
        settings.telegram_bot_token,
        max_age_seconds=settings.telegram_init_data_max_age_seconds,
    )


def _referrer_from(start_param: str | None) -> int | None:
    if start_param and start_param.isdigit():
        return int(start_param)
    return None


async def get_telegram_user(
    authorization: str | None = Header(default=None),
) -> TelegramUser:
    """Extract and verify `Authorization: Telegram <init data>`."""
    if not authorization:
        raise HTTPException(status_code=401, detail="authorization header is required")
    if not authorization.startswith(_SCHEME):
        raise HTTPException(status_code=401, detail="invalid authorization format")

    try:
        return authenticate_init_data(authorization[len(_SCHEME):], get_settings())
    except InitDataError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e


async def get_current_user(
    tg_user: TelegramUser = Depends(get_telegram_user),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Return the User for the verified Telegram identity.

    First-time users are registered; a numeric ``start_param`` names the referrer.
    """
    user, _ = await get_or_create_user(
        db,
        tg_user.id,
        username=tg_user.username,
        referrer_id=_referrer_from(tg_user.start_param),
    )
    await db.commit()
    return user


async def require_admin_key(
    x_admin_key: str | None = Header(default=None),
) -> None:
    """Guard admin endpoints with the shared `X-Admin-Key` secret."""
    expected = get_settings().admin_api_key
    if not expected or not x_admin_key or not hmac.compare_digest(expected, x_admin_key):
        raise HTTPException(status_code=403, detail="admin access required")
