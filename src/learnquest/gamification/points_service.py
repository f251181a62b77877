"""Points ledger: idempotent point awards with a maintained profile total.

Every award is one ``point_activities`` row plus one atomic increment of
``user_profiles.points``. Idempotency keys are enforced by a UNIQUE index and
``INSERT ... ON CONFLICT DO NOTHING``, so concurrent retries of the same
logical event converge on a single credit.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from learnquest.config import get_settings
from learnquest.db.models import BadgeDefinition, PointActivity, UserBadge, UserProfile
from learnquest.db.upsert import insert_for
from learnquest.gamification.errors import InvalidPointsError
from learnquest.gamification.events import POINTS_CHANNEL, publish_event

logger = structlog.get_logger()

COURSE_COMPLETION_POINTS = 100
QUIZ_BASE_POINTS = 50
QUIZ_MAX_BONUS_POINTS = 50
CERTIFICATE_POINTS = 200
COMMUNITY_CONTRIBUTION_POINTS = 5

# Largest single award a BIGINT ledger row can hold
MAX_AWARD_POINTS = 2**63 - 1


class ActivityType(str, enum.Enum):
    ACCOUNT_CREATION = "ACCOUNT_CREATION"
    COURSE_COMPLETION = "COURSE_COMPLETION"
    QUIZ_COMPLETION = "QUIZ_COMPLETION"
    CERTIFICATE_EARNED = "CERTIFICATE_EARNED"
    COMMUNITY_CONTRIBUTION = "COMMUNITY_CONTRIBUTION"
    DAILY_LOGIN = "DAILY_LOGIN"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
    OTHER = "OTHER"


# ---------------------------------------------------------------------------
# Canonical idempotency keys
# ---------------------------------------------------------------------------


def course_completion_key(user_id: str, course_id: str) -> str:
    return f"course_completion_{user_id}_{course_id}"


def quiz_completion_key(user_id: str, quiz_id: str) -> str:
    return f"quiz_completion_{user_id}_{quiz_id}"


def certificate_key(user_id: str, certificate_id: str) -> str:
    return f"certificate_earned_{user_id}_{certificate_id}"


def daily_login_key(user_id: str, activity_date: date) -> str:
    return f"daily_login_{user_id}_{activity_date.isoformat()}"


def community_contribution_key(user_id: str, contribution_id: str) -> str:
    return f"community_contribution_{user_id}_{contribution_id}"


def streak_bonus_key(user_id: str, streak: int, activity_date: date) -> str:
    return f"streak_bonus_{user_id}_{streak}_{activity_date.isoformat()}"


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


async def load_profile(db: AsyncSession, user_id: str, *, for_update: bool = False) -> UserProfile | None:
    """Read a profile from the database, bypassing stale identity-map state."""
    stmt = (
        select(UserProfile)
        .where(UserProfile.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def reload_profile(db: AsyncSession, user_id: str) -> UserProfile:
    """Fresh read of a profile that must exist."""
    profile = await load_profile(db, user_id)
    if profile is None:
        msg = f"Profile {user_id} disappeared mid-operation"
        raise LookupError(msg)
    return profile


async def ensure_profile(
    db: AsyncSession,
    user_id: str,
    username: str | None = None,
    image_url: str | None = None,
) -> None:
    """Create the profile row if absent, in a single atomic upsert."""
    now = datetime.now(timezone.utc)
    stmt = insert_for(db, UserProfile).values(
        user_id=user_id,
        username=username,
        image_url=image_url,
        points=0,
        total_points_earned=0,
        current_streak=0,
        longest_streak=0,
        featured_badge_ids=[],
        version=1,
        created_at=now,
        updated_at=now,
    )
    metadata = {k: v for k, v in (("username", username), ("image_url", image_url)) if v is not None}
    if metadata:
        stmt = stmt.on_conflict_do_update(index_elements=["user_id"], set_=metadata)
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=["user_id"])
    await db.execute(stmt)


async def get_or_create_profile(
    db: AsyncSession,
    user_id: str,
    username: str | None = None,
    image_url: str | None = None,
) -> UserProfile:
    """Get or create the gamification profile for a user."""
    await ensure_profile(db, user_id, username, image_url)
    await db.commit()
    return await reload_profile(db, user_id)


@dataclass(frozen=True)
class ProfileSummary:
    profile: UserProfile
    badges_earned: int
    badges_available: int


async def get_profile_summary(db: AsyncSession, user_id: str) -> ProfileSummary:
    """Profile plus earned / available badge counts."""
    profile = await get_or_create_profile(db, user_id)
    earned = await db.execute(
        select(func.count()).select_from(UserBadge).where(UserBadge.user_id == user_id)
    )
    available = await db.execute(select(func.count()).select_from(BadgeDefinition))
    return ProfileSummary(
        profile=profile,
        badges_earned=earned.scalar_one(),
        badges_available=available.scalar_one(),
    )


# ---------------------------------------------------------------------------
# Awards
# ---------------------------------------------------------------------------


def _validate_points(points: object) -> int:
    if isinstance(points, bool) or not isinstance(points, int):
        msg = f"Points must be an integer, got {type(points).__name__}"
        raise InvalidPointsError(msg)
    if points <= 0:
        msg = f"Points must be a positive number, got {points}"
        raise InvalidPointsError(msg)
    if points > MAX_AWARD_POINTS:
        msg = f"Points must be at most {MAX_AWARD_POINTS}, got {points}"
        raise InvalidPointsError(msg)
    return points


async def award_points(
    db: AsyncSession,
    redis: object,
    user_id: str,
    points: int,
    reason: str,
    activity_type: ActivityType | str,
    idempotency_key: str | None = None,
) -> UserProfile:
    """Award points to a user. Returns the updated (or, on replay, unchanged) profile.

    Within one transaction:
    1. Upsert the profile (seeded at zero)
    2. Insert the ledger row; ON CONFLICT on idempotency_key means replay
    3. Atomically increment the profile total by the delta

    Raises:
        InvalidPointsError: If points is not a positive integer.
    """
    try:
        _validate_points(points)
    except InvalidPointsError:
        logger.warning("points_rejected", user_id=user_id, points=points, reason=reason)
        raise
    activity_type = ActivityType(activity_type)
    now = datetime.now(timezone.utc)

    try:
        await ensure_profile(db, user_id)

        insert_activity = (
            insert_for(db, PointActivity)
            .values(
                user_id=user_id,
                points=points,
                reason=reason,
                activity_type=activity_type.value,
                idempotency_key=idempotency_key,
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["idempotency_key"])
            .returning(PointActivity.id)
        )
        activity_id = (await db.execute(insert_activity)).scalar_one_or_none()

        if activity_id is None:
            await db.commit()
            logger.info(
                "points_replay_detected",
                user_id=user_id,
                idempotency_key=idempotency_key,
                activity_type=activity_type.value,
            )
            return await reload_profile(db, user_id)

        await db.execute(
            update(UserProfile)
            .where(UserProfile.user_id == user_id)
            .values(
                points=UserProfile.points + points,
                total_points_earned=UserProfile.total_points_earned + points,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    profile = await reload_profile(db, user_id)

    logger.info(
        "points_awarded",
        user_id=user_id,
        points=points,
        total=profile.points,
        activity_type=activity_type.value,
        idempotency_key=idempotency_key,
    )
    await publish_event(redis, POINTS_CHANNEL, {
        "user_id": user_id,
        "points": points,
        "total": profile.points,
        "reason": reason,
        "activity_type": activity_type.value,
    })
    return profile


async def award_course_completion_points(
    db: AsyncSession, redis: object, user_id: str, course_id: str, course_name: str,
) -> UserProfile:
    return await award_points(
        db, redis, user_id, COURSE_COMPLETION_POINTS,
        f"Completed course: {course_name}",
        ActivityType.COURSE_COMPLETION,
        course_completion_key(user_id, course_id),
    )


async def award_quiz_completion_points(
    db: AsyncSession, redis: object, user_id: str, quiz_id: str, quiz_name: str, score: float,
) -> UserProfile:
    """Base points plus up to 50 bonus points scaled by the percentage score."""
    if not math.isfinite(score):
        msg = f"Quiz score must be a finite number, got {score}"
        raise InvalidPointsError(msg)
    score = min(max(score, 0), 100)
    total = QUIZ_BASE_POINTS + int(score / 100 * QUIZ_MAX_BONUS_POINTS)
    return await award_points(
        db, redis, user_id, total,
        f"Completed quiz: {quiz_name} with score {score:g}%",
        ActivityType.QUIZ_COMPLETION,
        quiz_completion_key(user_id, quiz_id),
    )


async def award_certificate_points(
    db: AsyncSession, redis: object, user_id: str, certificate_id: str, certificate_name: str,
) -> UserProfile:
    return await award_points(
        db, redis, user_id, CERTIFICATE_POINTS,
        f"Earned certificate: {certificate_name}",
        ActivityType.CERTIFICATE_EARNED,
        certificate_key(user_id, certificate_id),
    )


async def award_daily_login_points(
    db: AsyncSession, redis: object, user_id: str, activity_date: date | None = None,
) -> UserProfile:
    """Daily activity award, at most once per user per reference-timezone day."""
    settings = get_settings()
    if activity_date is None:
        activity_date = datetime.now(settings.tz).date()
    return await award_points(
        db, redis, user_id, settings.daily_activity_points,
        "Daily login bonus",
        ActivityType.DAILY_LOGIN,
        daily_login_key(user_id, activity_date),
    )


async def award_community_contribution_points(
    db: AsyncSession, redis: object, user_id: str, contribution_id: str, description: str = "Posted a comment",
) -> UserProfile:
    return await award_points(
        db, redis, user_id, COMMUNITY_CONTRIBUTION_POINTS,
        description,
        ActivityType.COMMUNITY_CONTRIBUTION,
        community_contribution_key(user_id, contribution_id),
    )


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


async def get_point_history(
    db: AsyncSession,
    user_id: str,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[PointActivity], int]:
    """Paginated ledger entries for a user, newest first."""
    total_result = await db.execute(
        select(func.count()).select_from(PointActivity).where(PointActivity.user_id == user_id)
    )
    total = total_result.scalar_one()

    offset = (page - 1) * per_page
    result = await db.execute(
        select(PointActivity)
        .where(PointActivity.user_id == user_id)
        .order_by(PointActivity.created_at.desc(), PointActivity.id.desc())
        .offset(offset)
        .limit(per_page)
    )
    return list(result.scalars().all()), total
