"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from learnquest.config import get_settings
from learnquest.database import close_db, get_session_factory, init_db
from learnquest.gamification.router import router as gamification_router
from learnquest.gamification.seed import seed_badges
from learnquest.health.router import router as health_router
from learnquest.middleware import setup_middleware
from learnquest.redis_client import close_redis, init_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Seed the badge catalog (idempotent)
    try:
        async with get_session_factory()() as db:
            await seed_badges(db)
    except Exception:
        logger.warning("badge_seed_failed", hint="tables may not exist yet; run alembic upgrade head", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="LearnQuest Gamification Engine",
        description="Points, streaks, badges and leaderboards for the learning platform",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(gamification_router)

    return app


app = create_app()
