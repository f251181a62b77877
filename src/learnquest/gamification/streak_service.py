"""Daily login streaks: calendar transitions, milestone badges and bonuses.

The transition table is a pure function of (last activity date, current,
longest) and the new activity date, evaluated at day granularity in the
configured reference timezone:

    no prior record  -> current = 1, longest = 1
    gap == 0         -> no change (same calendar day)
    gap == 1         -> current += 1, longest = max(longest, current)
    gap  > 1         -> current = 1, longest unchanged
    gap  < 0         -> no change (late event for an already-counted day)

Persistence serialises concurrent updates for the same user with
``SELECT ... FOR UPDATE`` plus an optimistic version check, and re-evaluates
the transition from fresh state on every retry.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from learnquest.config import get_settings
from learnquest.db.models import UserProfile
from learnquest.gamification.badge_service import BadgeTier, evaluate_and_grant
from learnquest.gamification.errors import StreakConflictError
from learnquest.gamification.events import STREAK_CHANNEL, publish_event
from learnquest.gamification.points_service import (
    ActivityType,
    award_points,
    daily_login_key,
    ensure_profile,
    load_profile,
    reload_profile,
    streak_bonus_key,
)

logger = structlog.get_logger()

STREAK_BADGE_NAME = "Streak"

STREAK_MILESTONE_TIERS: dict[int, BadgeTier] = {
    3: BadgeTier.BRONZE,
    7: BadgeTier.SILVER,
    30: BadgeTier.GOLD,
}


class TransitionKind(str, enum.Enum):
    STARTED = "started"
    CONTINUED = "continued"
    RESET = "reset"
    NOOP = "noop"


@dataclass(frozen=True)
class StreakState:
    last_activity_date: date | None
    current_streak: int
    longest_streak: int

    @classmethod
    def from_profile(cls, profile: UserProfile) -> StreakState:
        return cls(profile.last_activity_date, profile.current_streak, profile.longest_streak)


@dataclass(frozen=True)
class StreakTransition:
    kind: TransitionKind
    state: StreakState
    gap_days: int | None


def compute_transition(state: StreakState, activity_date: date) -> StreakTransition:
    """Apply one activity date to a streak state."""
    if state.last_activity_date is None:
        return StreakTransition(
            TransitionKind.STARTED,
            StreakState(activity_date, 1, max(state.longest_streak, 1)),
            None,
        )

    gap = (activity_date - state.last_activity_date).days
    if gap <= 0:
        return StreakTransition(TransitionKind.NOOP, state, gap)
    if gap == 1:
        current = state.current_streak + 1
        return StreakTransition(
            TransitionKind.CONTINUED,
            StreakState(activity_date, current, max(state.longest_streak, current)),
            gap,
        )
    return StreakTransition(
        TransitionKind.RESET,
        StreakState(activity_date, 1, max(state.longest_streak, 1)),
        gap,
    )


def to_reference_date(value: date | datetime | None, tz: tzinfo) -> date:
    """Resolve an activity timestamp to a calendar day in the reference timezone.

    Naive datetimes are taken as UTC.
    """
    if value is None:
        return datetime.now(tz).date()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(tz).date()
    return value


async def record_activity(
    db: AsyncSession,
    redis: object,
    user_id: str,
    activity_date: date | datetime | None = None,
) -> UserProfile:
    """Record a login/activity for a user and advance their streak.

    On a state change: daily activity points, then milestone badge tiers at
    3/7/30 days and bonus points at 7/30 days, all idempotency-keyed by
    (user, streak, date). A same-day repeat re-applies those keyed effects,
    which are replays unless an earlier attempt failed part-way.

    Raises:
        StreakConflictError: If the per-user update kept losing races.
    """
    settings = get_settings()
    day = to_reference_date(activity_date, settings.tz)
    transition = await _apply_transition(db, user_id, day, settings.streak_max_retries)

    if transition.kind is TransitionKind.NOOP and transition.gap_days != 0:
        logger.info("streak_late_event_ignored", user_id=user_id, activity_date=day.isoformat())
        return await reload_profile(db, user_id)

    state = transition.state
    if transition.kind is TransitionKind.NOOP:
        logger.info("streak_same_day_noop", user_id=user_id, activity_date=day.isoformat())
    else:
        logger.info(
            f"streak_{transition.kind.value}",
            user_id=user_id,
            activity_date=day.isoformat(),
            current_streak=state.current_streak,
            longest_streak=state.longest_streak,
            gap_days=transition.gap_days,
        )

    await award_points(
        db, redis, user_id, settings.daily_activity_points,
        "Daily login bonus",
        ActivityType.DAILY_LOGIN,
        daily_login_key(user_id, day),
    )
    await _apply_milestones(db, redis, user_id, state.current_streak, day, settings.streak_bonus_points)

    if transition.kind is not TransitionKind.NOOP:
        await publish_event(redis, STREAK_CHANNEL, {
            "user_id": user_id,
            "event": f"streak_{transition.kind.value}",
            "current_streak": state.current_streak,
            "longest_streak": state.longest_streak,
        })

    return await reload_profile(db, user_id)


async def _apply_transition(
    db: AsyncSession,
    user_id: str,
    day: date,
    max_retries: int,
) -> StreakTransition:
    """Read-modify-write the streak fields, retrying from fresh state on conflict."""
    for attempt in range(1, max_retries + 1):
        try:
            await ensure_profile(db, user_id)
            profile = await load_profile(db, user_id, for_update=True)
            if profile is None:
                msg = f"Profile {user_id} disappeared mid-operation"
                raise LookupError(msg)

            transition = compute_transition(StreakState.from_profile(profile), day)
            if transition.kind is not TransitionKind.NOOP:
                profile.current_streak = transition.state.current_streak
                profile.longest_streak = transition.state.longest_streak
                profile.last_activity_date = transition.state.last_activity_date
                profile.updated_at = datetime.now(timezone.utc)
            await db.commit()
            return transition
        except StaleDataError:
            await db.rollback()
            logger.warning("streak_update_conflict", user_id=user_id, attempt=attempt)
        except Exception:
            await db.rollback()
            raise

    raise StreakConflictError(user_id, max_retries)


async def _apply_milestones(
    db: AsyncSession,
    redis: object,
    user_id: str,
    streak: int,
    day: date,
    bonus_points: dict[int, int],
) -> None:
    tier = STREAK_MILESTONE_TIERS.get(streak)
    bonus = bonus_points.get(streak)
    if tier is None and not bonus:
        return

    logger.info("streak_milestone_reached", user_id=user_id, streak=streak)
    if tier is not None:
        await evaluate_and_grant(db, redis, user_id, STREAK_BADGE_NAME, tier)
    if bonus:
        await award_points(
            db, redis, user_id, bonus,
            f"{streak}-day login streak",
            ActivityType.DAILY_LOGIN,
            streak_bonus_key(user_id, streak, day),
        )


async def process_user_visit(
    db: AsyncSession,
    redis: object,
    user_id: str,
    visited_at: date | datetime | None = None,
) -> UserProfile | None:
    """Best-effort streak update for page-load hooks. Never raises."""
    try:
        return await record_activity(db, redis, user_id, visited_at)
    except Exception:
        logger.warning("process_user_visit_failed", user_id=user_id, exc_info=True)
        await db.rollback()
        return None
