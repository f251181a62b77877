"""Badge awarder: uniqueness, tier independence, catalog misses, featured badges."""

from __future__ import annotations

import json

import pytest
from sqlalchemy import func, select

from learnquest.db.models import BadgeDefinition, UserBadge
from learnquest.gamification.badge_service import (
    check_course_completion_badges,
    check_engagement_badges,
    evaluate_and_grant,
    get_badge,
    get_badges_with_status,
    get_featured_badges,
    get_latest_badges,
    get_user_badges,
    has_badge,
    list_badges,
    set_badge_favorite,
    set_featured_badges,
    update_progress_tier,
)
from learnquest.gamification.errors import FeaturedBadgesError, InvalidTierError
from learnquest.gamification.events import BADGE_CHANNEL
from learnquest.gamification.seed import BADGE_SEED_DATA, seed_badges


async def _grant_count(db, user_id: str) -> int:
    return (await db.execute(
        select(func.count()).select_from(UserBadge).where(UserBadge.user_id == user_id)
    )).scalar_one()


async def _tiers(db, user_id: str, name: str) -> set[str]:
    return {ub.badge.tier for ub in await get_user_badges(db, user_id) if ub.badge.name == name}


class TestSeed:
    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, db_session):
        await seed_badges(db_session)
        await seed_badges(db_session)
        count = (await db_session.execute(select(func.count()).select_from(BadgeDefinition))).scalar_one()
        assert count == len(BADGE_SEED_DATA) == 12

    @pytest.mark.asyncio
    async def test_every_family_has_three_tiers(self, seeded_db):
        badges = await list_badges(seeded_db)
        families: dict[str, set[str]] = {}
        for b in badges:
            families.setdefault(b.name, set()).add(b.tier)
        assert set(families) == {"Course Completer", "Streak", "Quiz Master", "Engaged Learner"}
        assert all(tiers == {"bronze", "silver", "gold"} for tiers in families.values())

    @pytest.mark.asyncio
    async def test_catalog_sorted(self, seeded_db):
        badges = await list_badges(seeded_db)
        assert [b.sort_order for b in badges] == sorted(b.sort_order for b in badges)


class TestEvaluateAndGrant:
    @pytest.mark.asyncio
    async def test_grants_once(self, seeded_db):
        first = await evaluate_and_grant(seeded_db, None, "u1", "Course Completer", "bronze")
        second = await evaluate_and_grant(seeded_db, None, "u1", "Course Completer", "bronze")

        assert first is not None
        assert first.badge.name == "Course Completer"
        assert first.badge.tier == "bronze"
        assert second is None
        assert await _grant_count(seeded_db, "u1") == 1

    @pytest.mark.asyncio
    async def test_gold_does_not_imply_lower_tiers(self, seeded_db):
        await evaluate_and_grant(seeded_db, None, "u1", "Course Completer", "gold")
        assert await _tiers(seeded_db, "u1", "Course Completer") == {"gold"}

    @pytest.mark.asyncio
    async def test_catalog_miss_returns_none(self, seeded_db):
        assert await evaluate_and_grant(seeded_db, None, "u1", "Nonexistent", "bronze") is None
        assert await _grant_count(seeded_db, "u1") == 0

    @pytest.mark.asyncio
    async def test_empty_catalog_returns_none(self, db_session):
        assert await evaluate_and_grant(db_session, None, "u1", "Course Completer", "bronze") is None

    @pytest.mark.asyncio
    async def test_invalid_tier_rejected(self, seeded_db):
        with pytest.raises(InvalidTierError):
            await evaluate_and_grant(seeded_db, None, "u1", "Course Completer", "platinum")

    @pytest.mark.asyncio
    async def test_grant_publishes_event(self, seeded_db, redis_mock):
        await evaluate_and_grant(seeded_db, redis_mock, "u1", "Streak", "silver")
        channel, payload = redis_mock.publish.await_args.args
        assert channel == BADGE_CHANNEL
        assert json.loads(payload)["tier"] == "silver"

    @pytest.mark.asyncio
    async def test_duplicate_does_not_publish(self, seeded_db, redis_mock):
        await evaluate_and_grant(seeded_db, None, "u1", "Streak", "silver")
        await evaluate_and_grant(seeded_db, redis_mock, "u1", "Streak", "silver")
        redis_mock.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_has_badge(self, seeded_db):
        badge = await get_badge(seeded_db, "Streak", "gold")
        assert await has_badge(seeded_db, "u1", badge.id) is False
        await evaluate_and_grant(seeded_db, None, "u1", "Streak", "gold")
        assert await has_badge(seeded_db, "u1", badge.id) is True


class TestProgressAndThresholds:
    @pytest.mark.asyncio
    async def test_progress_grants_single_tier(self, seeded_db):
        grant = await update_progress_tier(seeded_db, None, "u1", "Quiz Master", 12)
        assert grant.badge.tier == "silver"
        assert await _tiers(seeded_db, "u1", "Quiz Master") == {"silver"}

    @pytest.mark.asyncio
    async def test_course_completion_each_crossed_tier(self, seeded_db):
        awarded = await check_course_completion_badges(seeded_db, None, "u1", 5)
        assert sorted(g.badge.tier for g in awarded) == ["bronze", "silver"]

        awarded = await check_course_completion_badges(seeded_db, None, "u1", 10)
        assert [g.badge.tier for g in awarded] == ["gold"]
        assert await _tiers(seeded_db, "u1", "Course Completer") == {"bronze", "silver", "gold"}

    @pytest.mark.asyncio
    async def test_course_completion_zero(self, seeded_db):
        assert await check_course_completion_badges(seeded_db, None, "u1", 0) == []

    @pytest.mark.asyncio
    async def test_engagement_badges(self, seeded_db):
        awarded = await check_engagement_badges(seeded_db, None, "u1", 1)
        assert [g.badge.tier for g in awarded] == ["bronze"]
        assert await check_engagement_badges(seeded_db, None, "u1", 2) == []


class TestListing:
    @pytest.mark.asyncio
    async def test_status_marks_earned(self, seeded_db):
        await evaluate_and_grant(seeded_db, None, "u1", "Streak", "bronze")
        statuses = await get_badges_with_status(seeded_db, "u1")
        earned = [(s.badge.name, s.badge.tier) for s in statuses if s.earned]
        assert len(statuses) == 12
        assert earned == [("Streak", "bronze")]
        assert all(s.earned_at is None for s in statuses if not s.earned)

    @pytest.mark.asyncio
    async def test_latest_badges_limited(self, seeded_db):
        for tier in ("bronze", "silver", "gold"):
            await evaluate_and_grant(seeded_db, None, "u1", "Streak", tier)
        await evaluate_and_grant(seeded_db, None, "u1", "Quiz Master", "bronze")

        latest = await get_latest_badges(seeded_db, "u1", limit=3)
        assert len(latest) == 3
        assert (latest[0].badge.name, latest[0].badge.tier) == ("Quiz Master", "bronze")


class TestFavorites:
    @pytest.mark.asyncio
    async def test_toggle_favorite(self, seeded_db):
        grant = await evaluate_and_grant(seeded_db, None, "u1", "Streak", "bronze")
        assert await set_badge_favorite(seeded_db, "u1", grant.badge_id, True) is True
        (ub,) = await get_user_badges(seeded_db, "u1")
        await seeded_db.refresh(ub)
        assert ub.is_favorite is True

    @pytest.mark.asyncio
    async def test_favorite_unheld_badge(self, seeded_db):
        badge = await get_badge(seeded_db, "Streak", "gold")
        assert await set_badge_favorite(seeded_db, "u1", badge.id, True) is False


class TestFeaturedBadges:
    @pytest.mark.asyncio
    async def test_set_and_get_preserves_order(self, seeded_db):
        ids = []
        for tier in ("bronze", "silver", "gold"):
            grant = await evaluate_and_grant(seeded_db, None, "u1", "Streak", tier)
            ids.append(grant.badge_id)

        await set_featured_badges(seeded_db, "u1", list(reversed(ids)))
        featured = await get_featured_badges(seeded_db, "u1")
        assert featured.as_list() == list(reversed(ids))

    @pytest.mark.asyncio
    async def test_unheld_badge_rejected(self, seeded_db):
        grant = await evaluate_and_grant(seeded_db, None, "u1", "Streak", "bronze")
        other = await get_badge(seeded_db, "Streak", "gold")
        with pytest.raises(FeaturedBadgesError):
            await set_featured_badges(seeded_db, "u1", [grant.badge_id, other.id])
        assert (await get_featured_badges(seeded_db, "u1")).as_list() == []

    @pytest.mark.asyncio
    async def test_more_than_five_rejected(self, seeded_db):
        awarded = await check_course_completion_badges(seeded_db, None, "u1", 10)
        awarded += await check_engagement_badges(seeded_db, None, "u1", 50)
        with pytest.raises(FeaturedBadgesError):
            await set_featured_badges(seeded_db, "u1", [g.badge_id for g in awarded])

    @pytest.mark.asyncio
    async def test_clear(self, seeded_db):
        grant = await evaluate_and_grant(seeded_db, None, "u1", "Streak", "bronze")
        await set_featured_badges(seeded_db, "u1", [grant.badge_id])
        await set_featured_badges(seeded_db, "u1", [])
        assert (await get_featured_badges(seeded_db, "u1")).as_list() == []

    @pytest.mark.asyncio
    async def test_unknown_user_has_none(self, seeded_db):
        assert (await get_featured_badges(seeded_db, "nobody")).as_list() == []
