"""Gamification error taxonomy.

Validation errors subclass ``ValueError`` so the HTTP layer can map them to
422 without knowing each type. Replays and duplicate grants are not errors.
"""

from __future__ import annotations


class GamificationError(Exception):
    """Base class for engine errors."""


class InvalidPointsError(GamificationError, ValueError):
    """Point amount is not a positive integer."""


class InvalidPeriodError(GamificationError, ValueError):
    """Leaderboard period is not one of weekly, monthly, all-time."""


class InvalidTierError(GamificationError, ValueError):
    """Badge tier is not one of bronze, silver, gold."""


class FeaturedBadgesError(GamificationError, ValueError):
    """Featured badge list is too long, has duplicates, or names unheld badges."""


class StreakConflictError(GamificationError):
    """Concurrent streak updates kept colliding; safe to retry."""

    def __init__(self, user_id: str, attempts: int) -> None:
        super().__init__(f"Streak update for {user_id} lost {attempts} consecutive races")
        self.user_id = user_id
        self.attempts = attempts
