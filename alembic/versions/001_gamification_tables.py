"""Gamification tables.

Creates user_profiles, point_activities, badges, user_badges and
leaderboard_snapshots.

Revision ID: 001_gamification_tables
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_gamification_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- User Profiles (denormalized points + streak state) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_profiles (
            user_id VARCHAR(64) PRIMARY KEY,
            username VARCHAR(128),
            image_url TEXT,
            points BIGINT NOT NULL DEFAULT 0,
            total_points_earned BIGINT NOT NULL DEFAULT 0,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_activity_date DATE,
            featured_badge_ids JSONB NOT NULL DEFAULT '[]',
            version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT user_profiles_points_non_negative_check CHECK (points >= 0),
            CONSTRAINT user_profiles_longest_streak_gte_current_check CHECK (longest_streak >= current_streak)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_profiles_points
        ON user_profiles(points DESC, user_id)
    """)

    # --- Points Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS point_activities (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL REFERENCES user_profiles(user_id) ON DELETE CASCADE,
            points BIGINT NOT NULL,
            reason VARCHAR(256) NOT NULL,
            activity_type VARCHAR(32) NOT NULL,
            idempotency_key VARCHAR(256),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT point_activities_points_positive_check CHECK (points > 0),
            CONSTRAINT point_activities_idempotency_key_key UNIQUE (idempotency_key)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_point_activities_user_created
        ON point_activities(user_id, created_at)
    """)

    # --- Badge Catalog ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badges (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            tier VARCHAR(16) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            criteria_description TEXT NOT NULL DEFAULT '',
            icon_url VARCHAR(256),
            sort_order INTEGER NOT NULL DEFAULT 0,
            CONSTRAINT badges_name_tier_key UNIQUE (name, tier)
        )
    """)

    # --- User Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL REFERENCES user_profiles(user_id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES badges(id),
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            is_favorite BOOLEAN NOT NULL DEFAULT false,
            CONSTRAINT user_badges_user_id_badge_id_key UNIQUE (user_id, badge_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_badges_user_earned
        ON user_badges(user_id, earned_at DESC)
    """)

    # --- Leaderboard Snapshots ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_snapshots (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL REFERENCES user_profiles(user_id) ON DELETE CASCADE,
            period VARCHAR(16) NOT NULL,
            period_key VARCHAR(16) NOT NULL,
            points BIGINT NOT NULL,
            rank INTEGER NOT NULL,
            snapshot_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT lb_snapshots_user_period_key UNIQUE (user_id, period, period_key)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_lb_snapshots_period_rank
        ON leaderboard_snapshots(period, period_key, rank)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS leaderboard_snapshots CASCADE")
    op.execute("DROP TABLE IF EXISTS user_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS badges CASCADE")
    op.execute("DROP TABLE IF EXISTS point_activities CASCADE")
    op.execute("DROP TABLE IF EXISTS user_profiles CASCADE")
