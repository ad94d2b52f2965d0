"""Competency award claims.

One row per (user, mission) whose competency rewards were applied, so a
repeated progression run cannot credit the same completion twice.

Revision ID: 002_competency_awards
Revises: 001_progression_tables
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_competency_awards"
down_revision: str | None = "001_progression_tables"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS competency_awards (
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            mission_id UUID NOT NULL REFERENCES missions(id) ON DELETE CASCADE,
            awarded_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (user_id, mission_id)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS competency_awards CASCADE")
