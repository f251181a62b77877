"""Tiered badge grants with duplicate prevention.

A badge is a (name, tier) catalog row. Grants are independent per tier: a
gold grant says nothing about bronze or silver, so callers evaluate each
threshold they cross.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from learnquest.config import get_settings
from learnquest.db.models import BadgeDefinition, UserBadge
from learnquest.db.upsert import insert_for
from learnquest.gamification.errors import FeaturedBadgesError, InvalidTierError
from learnquest.gamification.events import BADGE_CHANNEL, publish_event
from learnquest.gamification.points_service import ensure_profile, load_profile, reload_profile

logger = structlog.get_logger()

COURSE_COMPLETER_BADGE = "Course Completer"
COURSE_COMPLETION_THRESHOLDS: dict[int, str] = {1: "bronze", 5: "silver", 10: "gold"}
ENGAGED_LEARNER_BADGE = "Engaged Learner"
ENGAGEMENT_THRESHOLDS: dict[int, str] = {1: "bronze", 10: "silver", 50: "gold"}


class BadgeTier(str, enum.Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"


def parse_tier(value: BadgeTier | str) -> BadgeTier:
    try:
        return BadgeTier(value)
    except ValueError as e:
        msg = f"Unknown badge tier: {value!r}"
        raise InvalidTierError(msg) from e


def tier_for_progress(progress: float) -> BadgeTier:
    """Map a continuous progress value to the single highest tier earned."""
    if progress >= 25:
        return BadgeTier.GOLD
    if progress >= 10:
        return BadgeTier.SILVER
    return BadgeTier.BRONZE


def tiers_for_count(count: int, thresholds: dict[int, str]) -> list[BadgeTier]:
    """Every tier whose threshold ``count`` has reached, lowest first."""
    return [parse_tier(tier) for threshold, tier in sorted(thresholds.items()) if count >= threshold]


# ---------------------------------------------------------------------------
# Catalog lookups
# ---------------------------------------------------------------------------


async def get_badge(db: AsyncSession, name: str, tier: BadgeTier | str) -> BadgeDefinition | None:
    """Fetch a catalog badge by (name, tier)."""
    result = await db.execute(
        select(BadgeDefinition).where(
            BadgeDefinition.name == name,
            BadgeDefinition.tier == parse_tier(tier).value,
        )
    )
    return result.scalar_one_or_none()


async def has_badge(db: AsyncSession, user_id: str, badge_id: int) -> bool:
    """Check if user already holds a specific badge."""
    result = await db.execute(
        select(UserBadge.id).where(
            UserBadge.user_id == user_id,
            UserBadge.badge_id == badge_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def list_badges(db: AsyncSession) -> list[BadgeDefinition]:
    result = await db.execute(
        select(BadgeDefinition).order_by(BadgeDefinition.sort_order, BadgeDefinition.id)
    )
    return list(result.scalars().all())


async def get_user_badges(db: AsyncSession, user_id: str) -> list[UserBadge]:
    """Badges earned by a user, most recent first."""
    result = await db.execute(
        select(UserBadge)
        .where(UserBadge.user_id == user_id)
        .order_by(UserBadge.earned_at.desc(), UserBadge.id.desc())
    )
    return list(result.scalars().unique().all())


async def get_latest_badges(db: AsyncSession, user_id: str, limit: int = 3) -> list[UserBadge]:
    return (await get_user_badges(db, user_id))[:limit]


@dataclass(frozen=True)
class BadgeStatus:
    badge: BadgeDefinition
    earned: bool
    earned_at: datetime | None
    is_favorite: bool


async def get_badges_with_status(db: AsyncSession, user_id: str) -> list[BadgeStatus]:
    """Every catalog badge annotated with whether this user holds it."""
    earned = {ub.badge_id: ub for ub in await get_user_badges(db, user_id)}
    statuses = []
    for badge in await list_badges(db):
        grant = earned.get(badge.id)
        statuses.append(BadgeStatus(
            badge=badge,
            earned=grant is not None,
            earned_at=grant.earned_at if grant else None,
            is_favorite=grant.is_favorite if grant else False,
        ))
    return statuses


# ---------------------------------------------------------------------------
# Grants
# ---------------------------------------------------------------------------


async def evaluate_and_grant(
    db: AsyncSession,
    redis: object,
    user_id: str,
    badge_name: str,
    tier: BadgeTier | str,
) -> UserBadge | None:
    """Grant (badge_name, tier) to a user if they do not already hold it.

    Returns the new grant, or None when the badge is already held or is
    missing from the catalog. Catalog gaps are logged, never raised.
    """
    tier = parse_tier(tier)
    badge = await get_badge(db, badge_name, tier)
    if badge is None:
        logger.warning("badge_catalog_miss", user_id=user_id, badge_name=badge_name, tier=tier.value)
        return None

    if await has_badge(db, user_id, badge.id):
        logger.debug("badge_already_granted", user_id=user_id, badge_name=badge_name, tier=tier.value)
        return None

    # Profile is created lazily so the grant has a row to reference
    now = datetime.now(timezone.utc)
    try:
        await ensure_profile(db, user_id)
        stmt = (
            insert_for(db, UserBadge)
            .values(user_id=user_id, badge_id=badge.id, earned_at=now, is_favorite=False)
            .on_conflict_do_nothing(index_elements=["user_id", "badge_id"])
            .returning(UserBadge.id)
        )
        grant_id = (await db.execute(stmt)).scalar_one_or_none()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if grant_id is None:
        # Lost a race with a concurrent grant of the same tier
        logger.debug("badge_already_granted", user_id=user_id, badge_name=badge_name, tier=tier.value)
        return None

    grant = await db.get(UserBadge, grant_id)
    logger.info("badge_granted", user_id=user_id, badge_name=badge_name, tier=tier.value, badge_id=badge.id)
    await publish_event(redis, BADGE_CHANNEL, {
        "user_id": user_id,
        "badge_id": badge.id,
        "badge_name": badge.name,
        "tier": tier.value,
    })
    return grant


async def update_progress_tier(
    db: AsyncSession,
    redis: object,
    user_id: str,
    badge_name: str,
    progress: float,
) -> UserBadge | None:
    """Grant only the tier that ``progress`` maps to (>= 25 gold, >= 10 silver)."""
    return await evaluate_and_grant(db, redis, user_id, badge_name, tier_for_progress(progress))


async def check_course_completion_badges(
    db: AsyncSession,
    redis: object,
    user_id: str,
    completed_course_count: int,
) -> list[UserBadge]:
    """Evaluate every Course Completer tier the completion count has crossed."""
    awarded = []
    for tier in tiers_for_count(completed_course_count, COURSE_COMPLETION_THRESHOLDS):
        grant = await evaluate_and_grant(db, redis, user_id, COURSE_COMPLETER_BADGE, tier)
        if grant is not None:
            awarded.append(grant)
    return awarded


async def check_engagement_badges(
    db: AsyncSession,
    redis: object,
    user_id: str,
    contribution_count: int,
) -> list[UserBadge]:
    """Evaluate Engaged Learner tiers for a running comment/discussion count."""
    awarded = []
    for tier in tiers_for_count(contribution_count, ENGAGEMENT_THRESHOLDS):
        grant = await evaluate_and_grant(db, redis, user_id, ENGAGED_LEARNER_BADGE, tier)
        if grant is not None:
            awarded.append(grant)
    return awarded


async def set_badge_favorite(db: AsyncSession, user_id: str, badge_id: int, is_favorite: bool) -> bool:
    """Toggle the favorite flag on a held badge. Returns False if not held."""
    result = await db.execute(
        update(UserBadge)
        .where(UserBadge.user_id == user_id, UserBadge.badge_id == badge_id)
        .values(is_favorite=is_favorite)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount > 0


# ---------------------------------------------------------------------------
# Featured badges
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeaturedBadges:
    """Ordered, duplicate-free list of at most ``max_size`` badge ids."""

    badge_ids: tuple[int, ...] = ()
    max_size: int = 5

    def __post_init__(self) -> None:
        if len(self.badge_ids) > self.max_size:
            msg = f"Maximum {self.max_size} badges can be featured"
            raise FeaturedBadgesError(msg)
        if len(set(self.badge_ids)) != len(self.badge_ids):
            msg = "Featured badges must not repeat"
            raise FeaturedBadgesError(msg)

    @classmethod
    def of(cls, badge_ids: Iterable[int], max_size: int | None = None) -> FeaturedBadges:
        if max_size is None:
            max_size = get_settings().featured_badges_max
        try:
            ids = tuple(int(b) for b in badge_ids)
        except (TypeError, ValueError) as e:
            msg = "Featured badge ids must be integers"
            raise FeaturedBadgesError(msg) from e
        return cls(ids, max_size)

    def as_list(self) -> list[int]:
        return list(self.badge_ids)


async def get_featured_badges(db: AsyncSession, user_id: str) -> FeaturedBadges:
    profile = await load_profile(db, user_id)
    if profile is None:
        return FeaturedBadges.of(())
    # Stored lists are trusted but re-bounded in case the limit was lowered
    return FeaturedBadges.of(profile.featured_badge_ids[: get_settings().featured_badges_max])


async def set_featured_badges(db: AsyncSession, user_id: str, badge_ids: Sequence[int]) -> FeaturedBadges:
    """Replace a user's featured badges. Every id must be a badge the user holds."""
    featured = FeaturedBadges.of(badge_ids)

    if featured.badge_ids:
        held = await db.execute(
            select(UserBadge.badge_id).where(
                UserBadge.user_id == user_id,
                UserBadge.badge_id.in_(featured.badge_ids),
            )
        )
        if len(set(held.scalars().all())) != len(featured.badge_ids):
            msg = "Some badges do not belong to the user"
            raise FeaturedBadgesError(msg)

    await ensure_profile(db, user_id)
    profile = await reload_profile(db, user_id)
    profile.featured_badge_ids = featured.as_list()
    profile.updated_at = datetime.now(timezone.utc)
    await db.commit()

    logger.info("featured_badges_updated", user_id=user_id, badge_ids=featured.as_list())
    return featured
