"""Initial schema: users, farm sessions, arcade players and energy uses.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users / points ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            telegram_id BIGINT PRIMARY KEY,
            username VARCHAR(64),
            referrer_id BIGINT REFERENCES users(telegram_id) ON DELETE SET NULL,
            points BIGINT NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ,
            last_auth_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_users_referrer
        ON users(referrer_id)
    """)

    # --- Farm ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS farm_sessions (
            player_id BIGINT PRIMARY KEY REFERENCES users(telegram_id) ON DELETE CASCADE,
            is_in_progress BOOLEAN NOT NULL DEFAULT false,
            started_at TIMESTAMPTZ,
            is_previous_claimed BOOLEAN NOT NULL DEFAULT true,
            CHECK (NOT is_in_progress OR started_at IS NOT NULL)
        )
    """)

    # --- Arcade ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS arcade_players (
            player_id BIGINT PRIMARY KEY REFERENCES users(telegram_id) ON DELETE CASCADE,
            total_energy INTEGER NOT NULL DEFAULT 3,
            ball_skin_id INTEGER
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS energy_uses (
            id SERIAL PRIMARY KEY,
            player_id BIGINT NOT NULL REFERENCES arcade_players(player_id) ON DELETE CASCADE,
            energy_number INTEGER NOT NULL,
            used_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT energy_uses_player_id_energy_number_key UNIQUE (player_id, energy_number)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_energy_uses_player_used
        ON energy_uses(player_id, used_at)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS energy_uses")
    op.execute("DROP TABLE IF EXISTS arcade_players")
    op.execute("DROP TABLE IF EXISTS farm_sessions")
    op.execute("DROP TABLE IF EXISTS users")
