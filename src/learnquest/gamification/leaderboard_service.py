"""Leaderboard aggregation: periodic full-replace snapshots plus live reads.

Weekly and monthly boards are versioned by a period key and served from
``leaderboard_snapshots``. All-time has no key to version, so it is always
ranked live from ``user_profiles``. Every read reports which source it used.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from learnquest.config import get_settings
from learnquest.db.models import LeaderboardSnapshot, UserProfile
from learnquest.db.upsert import insert_for
from learnquest.gamification.errors import InvalidPeriodError

logger = structlog.get_logger()

SNAPSHOT_BATCH_SIZE = 500


class LeaderboardPeriod(str, enum.Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all-time"

    @property
    def uses_snapshot(self) -> bool:
        return self is not LeaderboardPeriod.ALL_TIME


def parse_period(value: LeaderboardPeriod | str) -> LeaderboardPeriod:
    try:
        return LeaderboardPeriod(value)
    except ValueError as e:
        msg = f"Invalid period: {value!r}. Expected weekly, monthly or all-time"
        raise InvalidPeriodError(msg) from e


def compute_period_key(period: LeaderboardPeriod | str, now: datetime | None = None) -> str | None:
    """Period key in the reference timezone: '2026-W09' weekly, '2026-02' monthly.

    Uses %G-W%V (ISO year + ISO week) so weeks spanning New Year keep one key.
    """
    period = parse_period(period)
    if period is LeaderboardPeriod.ALL_TIME:
        return None

    tz = get_settings().tz
    if now is None:
        now = datetime.now(tz)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc).astimezone(tz)
    else:
        now = now.astimezone(tz)

    if period is LeaderboardPeriod.WEEKLY:
        return now.strftime("%G-W%V")
    return now.strftime("%Y-%m")


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: str
    username: str | None
    image_url: str | None
    points: int
    rank: int


@dataclass(frozen=True)
class LeaderboardView:
    period: LeaderboardPeriod
    period_key: str | None
    source: str  # "snapshot" | "live"
    entries: list[LeaderboardEntry] = field(default_factory=list)


@dataclass(frozen=True)
class RecomputeResult:
    updated_count: int
    timestamp: datetime
    period: LeaderboardPeriod
    period_key: str | None


def rank_profiles(rows: Iterable[Any]) -> list[LeaderboardEntry]:
    """Rank rows by points DESC, then user_id ASC. Ranks run 1..N with no gaps or ties.

    Each row needs ``user_id`` and ``points``; ``username`` and ``image_url``
    are optional.
    """
    ordered = sorted(rows, key=lambda r: (-r.points, r.user_id))
    return [
        LeaderboardEntry(
            user_id=row.user_id,
            username=getattr(row, "username", None),
            image_url=getattr(row, "image_url", None),
            points=row.points,
            rank=idx + 1,
        )
        for idx, row in enumerate(ordered)
    ]


def _clamp_limit(limit: int | None) -> int:
    settings = get_settings()
    if limit is None:
        return settings.leaderboard_default_limit
    return max(1, min(limit, settings.leaderboard_max_limit))


def user_id_tiebreak(dialect_name: str) -> Any:
    """``user_id`` compared in code-point order, matching ``rank_profiles``.

    SQLite's default BINARY collation already is; PostgreSQL needs ``"C"``.
    """
    if dialect_name == "postgresql":
        return UserProfile.user_id.collate("C")
    return UserProfile.user_id


# ---------------------------------------------------------------------------
# Recompute
# ---------------------------------------------------------------------------


async def recompute_leaderboard(
    db: AsyncSession,
    period: LeaderboardPeriod | str,
    now: datetime | None = None,
) -> RecomputeResult:
    """Rebuild the snapshot for the current period key from every profile.

    Full replace inside one transaction: upsert a row per user on
    (user_id, period, period_key), then delete rows for users no longer
    present. All-time only reports the profile count; it has no snapshot.
    """
    period = parse_period(period)
    if now is None:
        now = datetime.now(timezone.utc)
    period_key = compute_period_key(period, now)

    try:
        result = await db.execute(select(UserProfile.user_id, UserProfile.points))
        ranked = rank_profiles(result.all())

        if period_key is not None:
            await _replace_snapshot(db, period, period_key, ranked, now)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "leaderboard_recomputed",
        period=period.value,
        period_key=period_key,
        updated_count=len(ranked),
        source="snapshot" if period.uses_snapshot else "live",
    )
    return RecomputeResult(
        updated_count=len(ranked),
        timestamp=now,
        period=period,
        period_key=period_key,
    )


async def _replace_snapshot(
    db: AsyncSession,
    period: LeaderboardPeriod,
    period_key: str,
    ranked: list[LeaderboardEntry],
    now: datetime,
) -> None:
    for start in range(0, len(ranked), SNAPSHOT_BATCH_SIZE):
        batch = ranked[start:start + SNAPSHOT_BATCH_SIZE]
        stmt = insert_for(db, LeaderboardSnapshot).values([
            {
                "user_id": entry.user_id,
                "period": period.value,
                "period_key": period_key,
                "points": entry.points,
                "rank": entry.rank,
                "snapshot_at": now,
            }
            for entry in batch
        ])
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "period", "period_key"],
            set_={
                "points": stmt.excluded.points,
                "rank": stmt.excluded.rank,
                "snapshot_at": stmt.excluded.snapshot_at,
            },
        )
        await db.execute(stmt)

    # Drop users whose profile no longer exists
    stale = delete(LeaderboardSnapshot).where(
        LeaderboardSnapshot.period == period.value,
        LeaderboardSnapshot.period_key == period_key,
        LeaderboardSnapshot.user_id.not_in(select(UserProfile.user_id)),
    )
    await db.execute(stale)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def _live_entries(db: AsyncSession, limit: int) -> list[LeaderboardEntry]:
    tiebreak = user_id_tiebreak(db.get_bind().dialect.name)
    result = await db.execute(
        select(UserProfile)
        .order_by(UserProfile.points.desc(), tiebreak.asc())
        .limit(limit)
    )
    return rank_profiles(result.scalars().all())


async def _snapshot_entries(
    db: AsyncSession, period: LeaderboardPeriod, period_key: str, limit: int,
) -> list[LeaderboardEntry]:
    result = await db.execute(
        select(LeaderboardSnapshot)
        .where(
            LeaderboardSnapshot.period == period.value,
            LeaderboardSnapshot.period_key == period_key,
        )
        .order_by(LeaderboardSnapshot.rank.asc())
        .limit(limit)
    )
    return [
        LeaderboardEntry(
            user_id=row.user_id,
            username=row.profile.username,
            image_url=row.profile.image_url,
            points=row.points,
            rank=row.rank,
        )
        for row in result.scalars().all()
    ]


async def get_leaderboard(
    db: AsyncSession,
    period: LeaderboardPeriod | str,
    limit: int | None = None,
    now: datetime | None = None,
) -> LeaderboardView:
    """Top ``limit`` entries for a period.

    Weekly/monthly read the snapshot for the current period key and fall
    back to a live ranking when the job has not run yet this period, so a
    missing aggregation never yields an empty board.
    """
    period = parse_period(period)
    limit = _clamp_limit(limit)
    period_key = compute_period_key(period, now)

    if period_key is not None:
        entries = await _snapshot_entries(db, period, period_key, limit)
        if entries:
            return LeaderboardView(period, period_key, "snapshot", entries)
        logger.info("leaderboard_live_fallback", period=period.value, period_key=period_key)

    return LeaderboardView(period, period_key, "live", await _live_entries(db, limit))


async def get_user_rank(
    db: AsyncSession,
    user_id: str,
    period: LeaderboardPeriod | str,
    now: datetime | None = None,
) -> LeaderboardEntry | None:
    """A single user's standing, from the same source ``get_leaderboard`` would use."""
    period = parse_period(period)
    period_key = compute_period_key(period, now)

    if period_key is not None:
        has_snapshot = await db.execute(
            select(func.count()).select_from(LeaderboardSnapshot).where(
                LeaderboardSnapshot.period == period.value,
                LeaderboardSnapshot.period_key == period_key,
            )
        )
        if has_snapshot.scalar_one() > 0:
            result = await db.execute(
                select(LeaderboardSnapshot).where(
                    LeaderboardSnapshot.period == period.value,
                    LeaderboardSnapshot.period_key == period_key,
                    LeaderboardSnapshot.user_id == user_id,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return LeaderboardEntry(
                user_id=row.user_id,
                username=row.profile.username,
                image_url=row.profile.image_url,
                points=row.points,
                rank=row.rank,
            )

    profile = await db.get(UserProfile, user_id)
    if profile is None:
        return None
    tiebreak = user_id_tiebreak(db.get_bind().dialect.name)
    ahead = await db.execute(
        select(func.count()).select_from(UserProfile).where(
            or_(
                UserProfile.points > profile.points,
                and_(UserProfile.points == profile.points, tiebreak < user_id),
            )
        )
    )
    return LeaderboardEntry(
        user_id=profile.user_id,
        username=profile.username,
        image_url=profile.image_url,
        points=profile.points,
        rank=ahead.scalar_one() + 1,
    )
