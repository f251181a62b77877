"""Leaderboard arq worker tasks and settings."""

from __future__ import annotations

import pytest

from learnquest.gamification.leaderboard_worker import (
    LeaderboardWorkerSettings,
    refresh_monthly_leaderboard,
    refresh_weekly_leaderboard,
)
from learnquest.gamification.points_service import ActivityType, award_points


class TestRefreshTasks:
    @pytest.mark.asyncio
    async def test_weekly_refresh_counts_profiles(self, db_session):
        await award_points(db_session, None, "u1", 10, "x", ActivityType.OTHER)
        await award_points(db_session, None, "u2", 20, "x", ActivityType.OTHER)
        assert await refresh_weekly_leaderboard({}) == 2

    @pytest.mark.asyncio
    async def test_monthly_refresh_empty(self, db_session):
        assert await refresh_monthly_leaderboard({}) == 0


class TestWorkerSettings:
    def test_functions_registered(self):
        assert refresh_weekly_leaderboard in LeaderboardWorkerSettings.functions
        assert refresh_monthly_leaderboard in LeaderboardWorkerSettings.functions

    def test_cron_schedule(self):
        weekly, monthly = LeaderboardWorkerSettings.cron_jobs
        assert weekly.minute == set(range(0, 60, 5))
        assert monthly.minute == 0
