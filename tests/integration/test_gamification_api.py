"""Gamification API: identity, points, streak visits, badges, leaderboards."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from learnquest.config import get_settings
from learnquest.gamification import points_service, streak_service
from learnquest.gamification.badge_service import evaluate_and_grant, get_badge
from learnquest.gamification.errors import StreakConflictError


async def _award(client: AsyncClient, user_id: str, points: int, key: str | None = None, **headers):
    return await client.post(
        f"/api/v1/users/{user_id}/points",
        json={"points": points, "reason": "test award", "activity_type": "OTHER", "idempotency_key": key},
        headers=headers,
    )


class TestIdentity:
    @pytest.mark.asyncio
    async def test_me_requires_user_header(self, client: AsyncClient):
        response = await client.get("/api/v1/users/me/profile")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_blank_user_header_rejected(self, client: AsyncClient):
        response = await client.get("/api/v1/users/me/profile", headers={"X-User-Id": "  "})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_oversized_user_id_rejected(self, client: AsyncClient):
        response = await client.get("/api/v1/users/me/profile", headers={"X-User-Id": "x" * 65})
        assert response.status_code == 400


class TestProfileAndPoints:
    @pytest.mark.asyncio
    async def test_profile_created_on_first_read(self, client: AsyncClient, user_headers):
        response = await client.get("/api/v1/users/me/profile", headers=user_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == "user_alice"
        assert data["points"] == 0
        assert data["current_streak"] == 0
        assert data["badges_earned"] == 0
        assert data["badges_available"] == 12
        assert data["latest_badges"] == []

    @pytest.mark.asyncio
    async def test_award_is_idempotent(self, client: AsyncClient):
        first = await _award(client, "user_alice", 100, "course_completion_user_alice_c1")
        second = await _award(client, "user_alice", 100, "course_completion_user_alice_c1")
        assert first.status_code == 200
        assert first.json()["points"] == 100
        assert second.json()["points"] == 100

    @pytest.mark.asyncio
    @pytest.mark.parametrize("points", [0, -10])
    async def test_non_positive_award_is_422(self, client: AsyncClient, points):
        response = await _award(client, "user_alice", points)
        assert response.status_code == 422
        assert "positive" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_oversized_award_is_422(self, client: AsyncClient):
        response = await _award(client, "user_alice", 2**63)
        assert response.status_code == 422
        assert "at most" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_boolean_points_rejected(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/users/user_alice/points",
            json={"points": True, "reason": "x"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_award_requires_token_when_configured(self, client: AsyncClient, monkeypatch):
        monkeypatch.setenv("LQ_CRON_SECRET", "s3cret")
        get_settings.cache_clear()

        assert (await _award(client, "user_alice", 5)).status_code == 401
        assert (await _award(client, "user_alice", 5, Authorization="Bearer wrong")).status_code == 401
        assert (await _award(client, "user_alice", 5, Authorization="Bearer s3cret")).status_code == 200

    @pytest.mark.asyncio
    async def test_history(self, client: AsyncClient, user_headers):
        await _award(client, "user_alice", 5, "k1")
        await _award(client, "user_alice", 7, "k2")

        response = await client.get("/api/v1/users/me/points/history?per_page=1", headers=user_headers)
        data = response.json()
        assert data["total"] == 2
        assert data["per_page"] == 1
        assert [e["points"] for e in data["entries"]] == [7]


class TestVisit:
    @pytest.mark.asyncio
    async def test_visit_starts_streak_once_per_day(self, client: AsyncClient, user_headers):
        first = await client.post("/api/v1/users/me/visit", headers=user_headers)
        second = await client.post("/api/v1/users/me/visit", headers=user_headers)

        assert first.status_code == 200
        assert first.json()["current_streak"] == 1
        assert first.json()["points"] == 10
        assert second.json() == first.json()

    @pytest.mark.asyncio
    async def test_streak_conflict_is_503(self, client: AsyncClient, user_headers, monkeypatch):
        monkeypatch.setattr(
            streak_service, "record_activity", AsyncMock(side_effect=StreakConflictError("user_alice", 3)),
        )
        response = await client.post("/api/v1/users/me/visit", headers=user_headers)
        assert response.status_code == 503
        assert response.headers["retry-after"] == "1"

    @pytest.mark.asyncio
    async def test_storage_outage_is_503(self, client: AsyncClient, user_headers, monkeypatch):
        outage = OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))
        monkeypatch.setattr(points_service, "get_profile_summary", AsyncMock(side_effect=outage))
        response = await client.get("/api/v1/users/me/profile", headers=user_headers)
        assert response.status_code == 503
        assert response.headers["retry-after"] == "1"


class TestBadges:
    @pytest.mark.asyncio
    async def test_catalog(self, client: AsyncClient):
        response = await client.get("/api/v1/badges")
        assert response.status_code == 200
        badges = response.json()["badges"]
        assert len(badges) == 12
        assert {b["tier"] for b in badges} == {"bronze", "silver", "gold"}

    @pytest.mark.asyncio
    async def test_my_badges_and_status(self, client: AsyncClient, seeded_db, user_headers):
        await evaluate_and_grant(seeded_db, None, "user_alice", "Streak", "bronze")

        mine = (await client.get("/api/v1/users/me/badges", headers=user_headers)).json()
        assert mine["total_earned"] == 1
        assert mine["total_available"] == 12
        assert mine["earned"][0]["badge"]["name"] == "Streak"

        status = (await client.get("/api/v1/users/me/badges/status", headers=user_headers)).json()
        assert sum(1 for b in status["badges"] if b["earned"]) == 1

    @pytest.mark.asyncio
    async def test_featured_roundtrip(self, client: AsyncClient, seeded_db, user_headers):
        grant = await evaluate_and_grant(seeded_db, None, "user_alice", "Streak", "bronze")

        response = await client.put(
            "/api/v1/users/me/badges/featured", json={"badge_ids": [grant.badge_id]}, headers=user_headers,
        )
        assert response.status_code == 200
        assert response.json()["badge_ids"] == [grant.badge_id]

        response = await client.get("/api/v1/users/me/badges/featured", headers=user_headers)
        data = response.json()
        assert data["badge_ids"] == [grant.badge_id]
        assert data["badges"][0]["name"] == "Streak"

    @pytest.mark.asyncio
    async def test_featured_unheld_is_422(self, client: AsyncClient, seeded_db, user_headers):
        badge = await get_badge(seeded_db, "Streak", "gold")
        response = await client.put(
            "/api/v1/users/me/badges/featured", json={"badge_ids": [badge.id]}, headers=user_headers,
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_favorite(self, client: AsyncClient, seeded_db, user_headers):
        grant = await evaluate_and_grant(seeded_db, None, "user_alice", "Streak", "bronze")
        response = await client.put(
            f"/api/v1/users/me/badges/{grant.badge_id}/favorite", json={"is_favorite": True}, headers=user_headers,
        )
        assert response.status_code == 200
        assert response.json() == {"badge_id": grant.badge_id, "is_favorite": True}

    @pytest.mark.asyncio
    async def test_favorite_unheld_is_404(self, client: AsyncClient, seeded_db, user_headers):
        badge = await get_badge(seeded_db, "Streak", "gold")
        response = await client.put(
            f"/api/v1/users/me/badges/{badge.id}/favorite", json={"is_favorite": True}, headers=user_headers,
        )
        assert response.status_code == 404


class TestLeaderboardApi:
    @pytest.mark.asyncio
    async def test_live_then_snapshot(self, client: AsyncClient):
        for user_id, points in {"A": 50, "B": 80, "C": 80, "D": 10}.items():
            await _award(client, user_id, points, f"seed_{user_id}")

        live = (await client.get("/api/v1/leaderboard/weekly")).json()
        assert live["source"] == "live"
        assert [e["user_id"] for e in live["entries"]] == ["B", "C", "A", "D"]

        recompute = await client.post("/api/v1/internal/leaderboard/weekly/recompute")
        assert recompute.status_code == 200
        assert recompute.json()["updated_count"] == 4

        snap = (await client.get("/api/v1/leaderboard/weekly?limit=2")).json()
        assert snap["source"] == "snapshot"
        assert snap["period_key"] == recompute.json()["period_key"]
        assert [(e["user_id"], e["rank"]) for e in snap["entries"]] == [("B", 1), ("C", 2)]

    @pytest.mark.asyncio
    async def test_my_rank_included(self, client: AsyncClient):
        await _award(client, "A", 50, "seed_A")
        await _award(client, "B", 80, "seed_B")
        data = (await client.get("/api/v1/leaderboard/all-time", headers={"X-User-Id": "A"})).json()
        assert data["my_rank"]["rank"] == 2
        assert data["period_key"] is None

    @pytest.mark.asyncio
    async def test_invalid_period_is_422(self, client: AsyncClient):
        assert (await client.get("/api/v1/leaderboard/daily")).status_code == 422
        assert (await client.post("/api/v1/internal/leaderboard/daily/recompute")).status_code == 422

    @pytest.mark.asyncio
    async def test_recompute_requires_token_when_configured(self, client: AsyncClient, monkeypatch):
        monkeypatch.setenv("LQ_CRON_SECRET", "s3cret")
        get_settings.cache_clear()
        url = "/api/v1/internal/leaderboard/monthly/recompute"
        assert (await client.post(url)).status_code == 401
        assert (await client.post(url, headers={"Authorization": "Bearer s3cret"})).status_code == 200
