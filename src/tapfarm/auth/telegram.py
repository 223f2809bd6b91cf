"""Telegram Mini App init-data verification.

Init data is the URL-encoded query string Telegram hands to the web app. Its
``hash`` field is HMAC-SHA256 over the sorted ``key=value`` lines, keyed with
HMAC-SHA256("WebAppData", bot_token).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode


class InitDataError(ValueError):
    """Init data is malformed, forged or expired."""


@dataclass(frozen=True)
class TelegramUser:
    """User identity extracted from verified init data."""

    id: int
    username: str | None
    auth_date: int
    start_param: str | None = None


def _secret_key(bot_token: str) -> bytes:
    return hmac.new(b"WebAppData", bot_token.encode("utf-8"), hashlib.sha256).digest()


def _data_check_string(pairs: dict[str, str]) -> str:
    return "\n".join(f"{k}={pairs[k]}" for k in sorted(pairs))


def sign_init_data(fields: dict[str, str], bot_token: str) -> str:
    """Build a signed init-data string. Used by tests and local tooling."""
    pairs = dict(fields)
    pairs["hash"] = hmac.new(
        _secret_key(bot_token),
        _data_check_string(fields).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return urlencode(pairs)


def parse_init_data(init_data: str) -> TelegramUser:
    """Extract the user from init data without checking the signature."""
    try:
        pairs = dict(parse_qsl(init_data, strict_parsing=True))
    except ValueError as e:
        raise InitDataError("malformed init data") from e
    return _extract_user(pairs)


def _extract_user(pairs: dict[str, str]) -> TelegramUser:
    try:
        user = json.loads(pairs["user"])
        user_id = int(user["id"])
        auth_date = int(pairs.get("auth_date", "0"))
    except (KeyError, TypeError, ValueError) as e:
        raise InitDataError("invalid telegram user data") from e
    return TelegramUser(
        id=user_id,
        username=user.get("username"),
        auth_date=auth_date,
        start_param=pairs.get("start_param"),
    )


def verify_init_data(
    init_data: str,
    bot_token: str,
    max_age_seconds: int = 86_400,
    now: float | None = None,
) -> TelegramUser:
    """
    Verify init data against the bot token and return the user.

    Raises:
        InitDataError: If the data is malformed, the hash does not match,
            or ``auth_date`` is older than ``max_age_seconds`` (0 disables the check).
    """
    if not bot_token:
        raise InitDataError("bot token is not configured")
    try:
        pairs = dict(parse_qsl(init_data, strict_parsing=True))
    except ValueError as e:
        raise InitDataError("malformed init data") from e

    received_hash = pairs.pop("hash", None)
    if not received_hash:
        raise InitDataError("init data is not signed")

    expected = hmac.new(
        _secret_key(bot_token),
        _data_check_string(pairs).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    if not hmac.compare_digest(expected, received_hash):
        raise InitDataError("invalid init data signature")

    user = _extract_user(pairs)
    if max_age_seconds > 0:
        current = time.time() if now is None else now
        if current - user.auth_date > max_age_seconds:
            raise InitDataError("init data expired")
    return user
