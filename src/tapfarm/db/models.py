"""ORM models for users, the farm minigame and arcade energy accounting.

The Alembic migration in alembic/versions creates the same tables; tests build
them directly from this metadata.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    false,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from tapfarm.db.base import Base


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Telegram user and their points balance."""

    __tablename__ = "users"

    telegram_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    referrer_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.telegram_id", ondelete="SET NULL"), nullable=True
    )
    points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_auth_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Farm
# ---------------------------------------------------------------------------


class FarmSession(Base):
    """Single-slot harvest cycle per player."""

    __tablename__ = "farm_sessions"

    player_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.telegram_id", ondelete="CASCADE"), primary_key=True, autoincrement=False
    )
    is_in_progress: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_previous_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())


# ---------------------------------------------------------------------------
# Arcade
# ---------------------------------------------------------------------------


class ArcadePlayer(Base):
    """Arcade profile: energy budget and purchased cosmetics."""

    __tablename__ = "arcade_players"

    player_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.telegram_id", ondelete="CASCADE"), primary_key=True, autoincrement=False
    )
    total_energy: Mapped[int] = mapped_column(Integer, nullable=False, server_default="3")
    ball_skin_id: Mapped[int | None] = mapped_column(Integer, nullable=True)


class EnergyUse(Base):
    """One consumed energy unit. Each row replenishes on its own after the cooldown."""

    __tablename__ = "energy_uses"
    __table_args__ = (
        UniqueConstraint("player_id", "energy_number", name="energy_uses_player_id_energy_number_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    player_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("arcade_players.player_id", ondelete="CASCADE"), nullable=False, index=True
    )
    energy_number: Mapped[int] = mapped_column(Integer, nullable=False)
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
