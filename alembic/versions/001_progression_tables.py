"""Progression tables.

Creates ranks, users, campaigns, missions, completions, achievements,
artifacts and competencies, plus the partial unique index that allows at
most one APPROVED completion per (user, mission).

Revision ID: 001_progression_tables
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_progression_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Ranks & Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS ranks (
            id UUID PRIMARY KEY,
            title VARCHAR(255) NOT NULL,
            description TEXT,
            priority INTEGER NOT NULL DEFAULT 0,
            unlock_conditions JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            deleted_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_ranks_priority
        ON ranks(priority) WHERE deleted_at IS NULL
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id UUID PRIMARY KEY,
            tg_id BIGINT UNIQUE NOT NULL,
            username VARCHAR(255),
            first_name VARCHAR(255),
            last_name VARCHAR(255),
            experience_points INTEGER NOT NULL DEFAULT 0,
            mana_points INTEGER NOT NULL DEFAULT 0,
            rank_id UUID REFERENCES ranks(id),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Campaigns ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS campaigns (
            id UUID PRIMARY KEY,
            title VARCHAR(255) NOT NULL,
            description TEXT,
            activation_code VARCHAR(50) UNIQUE NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'DRAFT',
            start_date TIMESTAMPTZ,
            end_date TIMESTAMPTZ,
            max_participants INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            deleted_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_campaigns (
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            campaign_id UUID NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            is_active BOOLEAN NOT NULL DEFAULT true,
            PRIMARY KEY (user_id, campaign_id)
        )
    """)

    # --- Artifacts & Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS artifacts (
            id UUID PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            description TEXT,
            image_url TEXT,
            deleted_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            id UUID PRIMARY KEY,
            campaign_id UUID NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            description TEXT,
            image_url TEXT,
            unlock_conditions JSONB,
            experience_reward INTEGER NOT NULL DEFAULT 0,
            mana_reward INTEGER NOT NULL DEFAULT 0,
            awarded_artifact_id UUID REFERENCES artifacts(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_achievements_campaign_id
        ON achievements(campaign_id)
    """)

    # --- Missions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS missions (
            id UUID PRIMARY KEY,
            campaign_id UUID NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            title VARCHAR(255) NOT NULL,
            description TEXT,
            type VARCHAR(16) NOT NULL,
            experience_reward INTEGER NOT NULL DEFAULT 0,
            mana_reward INTEGER NOT NULL DEFAULT 0,
            competency_rewards JSONB,
            required_achievement_id UUID REFERENCES achievements(id) ON DELETE SET NULL,
            completion_code VARCHAR(64) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            deleted_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_missions_campaign_id
        ON missions(campaign_id)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS mission_quiz_details (
            mission_id UUID PRIMARY KEY REFERENCES missions(id) ON DELETE CASCADE,
            questions JSONB NOT NULL,
            pass_threshold DOUBLE PRECISION NOT NULL DEFAULT 1.0
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS mission_completions (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            mission_id UUID NOT NULL REFERENCES missions(id) ON DELETE CASCADE,
            status VARCHAR(16) NOT NULL DEFAULT 'PENDING_REVIEW',
            result_data JSONB,
            moderator_comment TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            reviewed_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_mission_completions_user_id
        ON mission_completions(user_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_mission_completions_mission_id
        ON mission_completions(mission_id)
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_mission_completions_approved
        ON mission_completions(user_id, mission_id) WHERE status = 'APPROVED'
    """)

    # --- Ownership ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_artifacts (
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            artifact_id UUID NOT NULL REFERENCES artifacts(id) ON DELETE CASCADE,
            acquired_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (user_id, artifact_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_achievements (
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            achievement_id UUID NOT NULL REFERENCES achievements(id) ON DELETE CASCADE,
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (user_id, achievement_id)
        )
    """)

    # --- Competencies ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS competencies (
            id UUID PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            description TEXT,
            campaign_id UUID REFERENCES campaigns(id) ON DELETE CASCADE,
            is_archived BOOLEAN NOT NULL DEFAULT false
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_competencies (
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            competency_id UUID NOT NULL REFERENCES competencies(id) ON DELETE CASCADE,
            progress_points INTEGER NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            PRIMARY KEY (user_id, competency_id)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS user_competencies CASCADE")
    op.execute("DROP TABLE IF EXISTS competencies CASCADE")
    op.execute("DROP TABLE IF EXISTS user_achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS user_artifacts CASCADE")
    op.execute("DROP TABLE IF EXISTS mission_completions CASCADE")
    op.execute("DROP TABLE IF EXISTS mission_quiz_details CASCADE")
    op.execute("DROP TABLE IF EXISTS missions CASCADE")
    op.execute("DROP TABLE IF EXISTS achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS artifacts CASCADE")
    op.execute("DROP TABLE IF EXISTS user_campaigns CASCADE")
    op.execute("DROP TABLE IF EXISTS campaigns CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
    op.execute("DROP TABLE IF EXISTS ranks CASCADE")
