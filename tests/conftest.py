"""Shared test fixtures."""

from __future__ import annotations

import os

# Settings are read at import time by tapfarm.main; configure before importing it.
os.environ["TAPFARM_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["TAPFARM_TELEGRAM_BOT_TOKEN"] = "123456:TEST-BOT-TOKEN"
os.environ["TAPFARM_TELEGRAM_AUTH_DEBUG"] = "false"
os.environ["TAPFARM_ADMIN_API_KEY"] = "test-admin-key"
os.environ["TAPFARM_LOG_FORMAT"] = "console"

import json  # noqa: E402
import time  # noqa: E402
from collections.abc import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from tapfarm.auth.telegram import sign_init_data  # noqa: E402
from tapfarm.config import get_settings  # noqa: E402
from tapfarm.database import close_db, get_engine, get_session_factory, init_db  # noqa: E402
from tapfarm.db.base import Base  # noqa: E402
from tapfarm.db import models  # noqa: E402, F401

get_settings.cache_clear()

TEST_BOT_TOKEN = os.environ["TAPFARM_TELEGRAM_BOT_TOKEN"]


def _make_init_data(
    telegram_id: int,
    username: str | None = "player",
    start_param: str | None = None,
    auth_date: int | None = None,
) -> str:
    """Build init data signed with the test bot token."""
    user: dict[str, object] = {"id": telegram_id, "first_name": "Test"}
    if username:
        user["username"] = username
    fields = {
        "query_id": "AAHdF6IQAAAAAN0XohDhrOrc",
        "user": json.dumps(user, separators=(",", ":")),
        "auth_date": str(auth_date if auth_date is not None else int(time.time())),
    }
    if start_param is not None:
        fields["start_param"] = start_param
    return sign_init_data(fields, TEST_BOT_TOKEN)


def _auth_headers(telegram_id: int, **kwargs: object) -> dict[str, str]:
    """Authorization header for a Telegram user."""
    return {"Authorization": f"Telegram {_make_init_data(telegram_id, **kwargs)}"}


@pytest.fixture
def init_data():
    """Factory for signed init data: init_data(telegram_id, username=..., start_param=...)."""
    return _make_init_data


@pytest.fixture
def auth_headers():
    """Factory for Telegram Authorization headers."""
    return _auth_headers


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Fresh in-memory database with all tables created."""
    await init_db(get_settings().database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database: None) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for test setup and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def client(database: None) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client bound to the test database."""
    from tapfarm.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
