"""Pydantic request/response models for gamification endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field, StrictInt

from learnquest.gamification.points_service import ActivityType

# --- Badge ---


class BadgeResponse(BaseModel):
    id: int
    name: str
    tier: str
    description: str
    criteria_description: str
    icon_url: str | None = None


class AllBadgesResponse(BaseModel):
    badges: list[BadgeResponse]


class EarnedBadgeResponse(BaseModel):
    badge: BadgeResponse
    earned_at: datetime
    is_favorite: bool = False


class UserBadgesResponse(BaseModel):
    earned: list[EarnedBadgeResponse]
    total_available: int
    total_earned: int


class BadgeStatusResponse(BaseModel):
    badge: BadgeResponse
    earned: bool
    earned_at: datetime | None = None
    is_favorite: bool = False


class BadgeStatusListResponse(BaseModel):
    badges: list[BadgeStatusResponse]


class FeaturedBadgesRequest(BaseModel):
    badge_ids: list[StrictInt]


class FeaturedBadgesResponse(BaseModel):
    badge_ids: list[int]
    badges: list[BadgeResponse] = []


class FavoriteRequest(BaseModel):
    is_favorite: bool


class FavoriteResponse(BaseModel):
    badge_id: int
    is_favorite: bool


# --- Points ---


class AwardPointsRequest(BaseModel):
    points: StrictInt
    reason: str = Field(min_length=1, max_length=256)
    activity_type: ActivityType = ActivityType.OTHER
    idempotency_key: str | None = Field(None, max_length=256)


class AwardPointsResponse(BaseModel):
    user_id: str
    points: int
    total_points_earned: int


class PointHistoryEntry(BaseModel):
    id: int
    points: int
    reason: str
    activity_type: str
    idempotency_key: str | None = None
    created_at: datetime


class PointHistoryResponse(BaseModel):
    entries: list[PointHistoryEntry]
    total: int
    page: int
    per_page: int


# --- Profile / streak ---


class ProfileResponse(BaseModel):
    user_id: str
    username: str | None = None
    image_url: str | None = None
    points: int
    total_points_earned: int
    current_streak: int
    longest_streak: int
    last_activity_date: date | None = None
    badges_earned: int
    badges_available: int
    latest_badges: list[EarnedBadgeResponse] = []


class StreakResponse(BaseModel):
    user_id: str
    current_streak: int
    longest_streak: int
    last_activity_date: date | None = None
    points: int


# --- Leaderboard ---


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: str
    username: str | None = None
    image_url: str | None = None
    points: int


class LeaderboardResponse(BaseModel):
    period: str
    period_key: str | None = None
    source: str
    entries: list[LeaderboardEntryResponse]
    my_rank: LeaderboardEntryResponse | None = None


class RecomputeResponse(BaseModel):
    period: str
    period_key: str | None = None
    updated_count: int
    timestamp: datetime
