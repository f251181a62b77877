"""Leaderboard refresh arq worker: periodic snapshot rebuilds.

Intervals:
- Weekly: every 5 minutes
- Monthly: every hour
- All-time: never (ranked live on read)

Run with ``arq learnquest.gamification.leaderboard_worker.LeaderboardWorkerSettings``.
"""

from __future__ import annotations

import structlog
from arq import cron
from arq.connections import RedisSettings

from learnquest.config import get_settings
from learnquest.database import close_db, get_session_factory, init_db
from learnquest.gamification.leaderboard_service import LeaderboardPeriod, recompute_leaderboard
from learnquest.middleware.logging import setup_logging

logger = structlog.get_logger()


async def _refresh(period: LeaderboardPeriod) -> int:
    async with get_session_factory()() as db:
        result = await recompute_leaderboard(db, period)
    return result.updated_count


async def refresh_weekly_leaderboard(ctx: dict) -> int:
    """Rebuild the current ISO week's snapshot. Runs every 5 minutes."""
    return await _refresh(LeaderboardPeriod.WEEKLY)


async def refresh_monthly_leaderboard(ctx: dict) -> int:
    """Rebuild the current month's snapshot. Runs every hour."""
    return await _refresh(LeaderboardPeriod.MONTHLY)


async def leaderboard_startup(ctx: dict) -> None:
    """Initialize logging and DB connections on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    logger.info("leaderboard_worker_started")


async def leaderboard_shutdown(ctx: dict) -> None:
    await close_db()
    logger.info("leaderboard_worker_stopped")


class LeaderboardWorkerSettings:
    """arq worker settings for leaderboard refresh."""

    functions = [
        refresh_weekly_leaderboard,
        refresh_monthly_leaderboard,
    ]
    cron_jobs = [
        cron(refresh_weekly_leaderboard, minute=set(range(0, 60, 5)), run_at_startup=True),
        cron(refresh_monthly_leaderboard, minute=0, run_at_startup=True),
    ]
    on_startup = leaderboard_startup
    on_shutdown = leaderboard_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 2
    job_timeout = 300  # 5 minutes max per job
