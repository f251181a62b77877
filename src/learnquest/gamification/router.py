"""Gamification API endpoints.

Thin transport over the services: identity comes from ``get_current_user_id``
and every engine call receives it explicitly.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from learnquest.database import get_session
from learnquest.db.models import BadgeDefinition, UserBadge
from learnquest.dependencies import (
    get_current_user_id,
    get_optional_user_id,
    get_redis_dep,
    require_internal_token,
)
from learnquest.gamification import badge_service, leaderboard_service, points_service, streak_service
from learnquest.gamification.leaderboard_service import LeaderboardEntry
from learnquest.gamification.schemas import (
    AllBadgesResponse,
    AwardPointsRequest,
    AwardPointsResponse,
    BadgeResponse,
    BadgeStatusListResponse,
    BadgeStatusResponse,
    EarnedBadgeResponse,
    FavoriteRequest,
    FavoriteResponse,
    FeaturedBadgesRequest,
    FeaturedBadgesResponse,
    LeaderboardEntryResponse,
    LeaderboardResponse,
    PointHistoryEntry,
    PointHistoryResponse,
    ProfileResponse,
    RecomputeResponse,
    StreakResponse,
    UserBadgesResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


def _badge(b: BadgeDefinition) -> BadgeResponse:
    return BadgeResponse(
        id=b.id,
        name=b.name,
        tier=b.tier,
        description=b.description,
        criteria_description=b.criteria_description,
        icon_url=b.icon_url,
    )


def _earned(ub: UserBadge) -> EarnedBadgeResponse:
    return EarnedBadgeResponse(badge=_badge(ub.badge), earned_at=ub.earned_at, is_favorite=ub.is_favorite)


def _entry(e: LeaderboardEntry) -> LeaderboardEntryResponse:
    return LeaderboardEntryResponse(
        rank=e.rank,
        user_id=e.user_id,
        username=e.username,
        image_url=e.image_url,
        points=e.points,
    )


# ── Public endpoints ──


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(db: AsyncSession = Depends(get_session)):
    """Full badge catalog, every tier."""
    badges = await badge_service.list_badges(db)
    return AllBadgesResponse(badges=[_badge(b) for b in badges])


@router.get("/leaderboard/{period}", response_model=LeaderboardResponse)
async def get_leaderboard(
    period: str,
    limit: int | None = Query(None, ge=1),
    user_id: str | None = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Leaderboard for weekly, monthly or all-time; includes the caller's rank when known."""
    view = await leaderboard_service.get_leaderboard(db, period, limit)
    my_rank = None
    if user_id is not None:
        mine = await leaderboard_service.get_user_rank(db, user_id, view.period)
        my_rank = _entry(mine) if mine else None
    return LeaderboardResponse(
        period=view.period.value,
        period_key=view.period_key,
        source=view.source,
        entries=[_entry(e) for e in view.entries],
        my_rank=my_rank,
    )


# ── Internal endpoints ──


@router.post(
    "/internal/leaderboard/{period}/recompute",
    response_model=RecomputeResponse,
    dependencies=[Depends(require_internal_token)],
)
async def recompute_leaderboard(period: str, db: AsyncSession = Depends(get_session)):
    """Scheduler trigger for a snapshot rebuild."""
    result = await leaderboard_service.recompute_leaderboard(db, period)
    return RecomputeResponse(
        period=result.period.value,
        period_key=result.period_key,
        updated_count=result.updated_count,
        timestamp=result.timestamp,
    )


@router.post(
    "/users/{user_id}/points",
    response_model=AwardPointsResponse,
    dependencies=[Depends(require_internal_token)],
)
async def award_points(
    user_id: str,
    body: AwardPointsRequest,
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    """Service-to-service award. Replays with the same idempotency key are no-ops."""
    profile = await points_service.award_points(
        db, redis, user_id, body.points, body.reason, body.activity_type, body.idempotency_key,
    )
    return AwardPointsResponse(
        user_id=profile.user_id,
        points=profile.points,
        total_points_earned=profile.total_points_earned,
    )


# ── Authenticated endpoints ──


@router.get("/users/me/profile", response_model=ProfileResponse)
async def get_my_profile(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    summary = await points_service.get_profile_summary(db, user_id)
    latest = await badge_service.get_latest_badges(db, user_id)
    p = summary.profile
    return ProfileResponse(
        user_id=p.user_id,
        username=p.username,
        image_url=p.image_url,
        points=p.points,
        total_points_earned=p.total_points_earned,
        current_streak=p.current_streak,
        longest_streak=p.longest_streak,
        last_activity_date=p.last_activity_date,
        badges_earned=summary.badges_earned,
        badges_available=summary.badges_available,
        latest_badges=[_earned(ub) for ub in latest],
    )


@router.get("/users/me/points/history", response_model=PointHistoryResponse)
async def get_point_history(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    entries, total = await points_service.get_point_history(db, user_id, page, per_page)
    return PointHistoryResponse(
        entries=[
            PointHistoryEntry(
                id=a.id,
                points=a.points,
                reason=a.reason,
                activity_type=a.activity_type,
                idempotency_key=a.idempotency_key,
                created_at=a.created_at,
            )
            for a in entries
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/users/me/visit", response_model=StreakResponse)
async def record_visit(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    """Record today's activity: advances the streak and grants the daily bonus once per day."""
    profile = await streak_service.record_activity(db, redis, user_id)
    return StreakResponse(
        user_id=profile.user_id,
        current_streak=profile.current_streak,
        longest_streak=profile.longest_streak,
        last_activity_date=profile.last_activity_date,
        points=profile.points,
    )


@router.get("/users/me/badges", response_model=UserBadgesResponse)
async def get_my_badges(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    earned = await badge_service.get_user_badges(db, user_id)
    catalog = await badge_service.list_badges(db)
    return UserBadgesResponse(
        earned=[_earned(ub) for ub in earned],
        total_available=len(catalog),
        total_earned=len(earned),
    )


@router.get("/users/me/badges/status", response_model=BadgeStatusListResponse)
async def get_my_badge_status(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Every catalog badge with the caller's earned state."""
    statuses = await badge_service.get_badges_with_status(db, user_id)
    return BadgeStatusListResponse(
        badges=[
            BadgeStatusResponse(
                badge=_badge(s.badge),
                earned=s.earned,
                earned_at=s.earned_at,
                is_favorite=s.is_favorite,
            )
            for s in statuses
        ]
    )


async def _featured_response(db: AsyncSession, badge_ids: list[int]) -> FeaturedBadgesResponse:
    by_id = {b.id: b for b in await badge_service.list_badges(db)}
    return FeaturedBadgesResponse(
        badge_ids=badge_ids,
        badges=[_badge(by_id[i]) for i in badge_ids if i in by_id],
    )


@router.get("/users/me/badges/featured", response_model=FeaturedBadgesResponse)
async def get_my_featured_badges(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    featured = await badge_service.get_featured_badges(db, user_id)
    return await _featured_response(db, featured.as_list())


@router.put("/users/me/badges/featured", response_model=FeaturedBadgesResponse)
async def set_my_featured_badges(
    body: FeaturedBadgesRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Replace the featured list (ordered, at most five, badges the caller holds)."""
    featured = await badge_service.set_featured_badges(db, user_id, body.badge_ids)
    return await _featured_response(db, featured.as_list())


@router.put("/users/me/badges/{badge_id}/favorite", response_model=FavoriteResponse)
async def set_my_badge_favorite(
    badge_id: int,
    body: FavoriteRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    updated = await badge_service.set_badge_favorite(db, user_id, badge_id, body.is_favorite)
    if not updated:
        raise HTTPException(status_code=404, detail="Badge not earned")
    return FavoriteResponse(badge_id=badge_id, is_favorite=body.is_favorite)
