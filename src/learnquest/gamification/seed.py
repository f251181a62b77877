"""Badge catalog seed data: four badge families, each in bronze/silver/gold."""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from learnquest.db.models import BadgeDefinition
from learnquest.db.upsert import insert_for

logger = structlog.get_logger()

BADGE_SEED_DATA: list[dict] = [
    # Course completion
    {
        "name": "Course Completer",
        "tier": "bronze",
        "description": "Completed your first course",
        "criteria_description": "Complete all chapters in any course",
        "icon_url": "/badges/course-completed.svg",
        "sort_order": 1,
    },
    {
        "name": "Course Completer",
        "tier": "silver",
        "description": "Completed 5 different courses",
        "criteria_description": "Complete 5 different courses",
        "icon_url": "/badges/course-completed.svg",
        "sort_order": 2,
    },
    {
        "name": "Course Completer",
        "tier": "gold",
        "description": "Completed 10 different courses",
        "criteria_description": "Complete 10 different courses",
        "icon_url": "/badges/course-completed.svg",
        "sort_order": 3,
    },
    # Login streaks
    {
        "name": "Streak",
        "tier": "bronze",
        "description": "Logged in for 3 consecutive days",
        "criteria_description": "Log in to the platform for 3 days in a row",
        "icon_url": "/badges/streak-master.svg",
        "sort_order": 4,
    },
    {
        "name": "Streak",
        "tier": "silver",
        "description": "Logged in for 7 consecutive days",
        "criteria_description": "Log in to the platform for 7 days in a row",
        "icon_url": "/badges/streak-master.svg",
        "sort_order": 5,
    },
    {
        "name": "Streak",
        "tier": "gold",
        "description": "Logged in for 30 consecutive days",
        "criteria_description": "Log in to the platform for 30 days in a row",
        "icon_url": "/badges/streak-master.svg",
        "sort_order": 6,
    },
    # Quizzes (progress-tiered: >= 10 silver, >= 25 gold)
    {
        "name": "Quiz Master",
        "tier": "bronze",
        "description": "Passed your first quiz",
        "criteria_description": "Complete any quiz",
        "icon_url": "/badges/quiz-master.svg",
        "sort_order": 7,
    },
    {
        "name": "Quiz Master",
        "tier": "silver",
        "description": "Passed 10 quizzes",
        "criteria_description": "Complete 10 quizzes",
        "icon_url": "/badges/quiz-master.svg",
        "sort_order": 8,
    },
    {
        "name": "Quiz Master",
        "tier": "gold",
        "description": "Passed 25 quizzes",
        "criteria_description": "Complete 25 quizzes",
        "icon_url": "/badges/quiz-master.svg",
        "sort_order": 9,
    },
    # Community
    {
        "name": "Engaged Learner",
        "tier": "bronze",
        "description": "Posted your first comment",
        "criteria_description": "Post a comment on any course content",
        "icon_url": "/badges/engaged-learner.svg",
        "sort_order": 10,
    },
    {
        "name": "Engaged Learner",
        "tier": "silver",
        "description": "Posted 10 comments",
        "criteria_description": "Post 10 comments across the platform",
        "icon_url": "/badges/engaged-learner.svg",
        "sort_order": 11,
    },
    {
        "name": "Engaged Learner",
        "tier": "gold",
        "description": "Posted 50 comments",
        "criteria_description": "Post 50 comments across the platform",
        "icon_url": "/badges/engaged-learner.svg",
        "sort_order": 12,
    },
]


async def seed_badges(db: AsyncSession) -> int:
    """Upsert every catalog badge on (name, tier). Returns number of badges seeded."""
    seeded = 0
    for badge_data in BADGE_SEED_DATA:
        stmt = insert_for(db, BadgeDefinition).values(**badge_data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["name", "tier"],
            set_={
                "description": stmt.excluded.description,
                "criteria_description": stmt.excluded.criteria_description,
                "icon_url": stmt.excluded.icon_url,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("badges_seeded", count=seeded)
    return seeded
