"""Shared test fixtures.

Every test gets a fresh in-memory SQLite database (one shared connection via
StaticPool) with the schema created from the ORM metadata.
"""

from __future__ import annotations

import os

os.environ.setdefault("LQ_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LQ_LOG_FORMAT", "console")
os.environ.setdefault("LQ_REFERENCE_TIMEZONE", "UTC")

from collections.abc import AsyncGenerator  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from learnquest.config import get_settings  # noqa: E402
from learnquest.database import close_db, get_engine, get_session_factory, init_db  # noqa: E402
from learnquest.db import models  # noqa: E402, F401
from learnquest.db.base import Base  # noqa: E402
from learnquest.gamification.seed import seed_badges  # noqa: E402
from learnquest.main import create_app  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are cached; tests that monkeypatch LQ_* env vars need a clean cache."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[None, None]:
    await init_db(get_settings().database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for service calls and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def seeded_db(db_session: AsyncSession) -> AsyncSession:
    """Session with the badge catalog seeded."""
    await seed_badges(db_session)
    return db_session


@pytest.fixture
def redis_mock() -> AsyncMock:
    """Stands in for the Redis client; records pub/sub publishes."""
    return AsyncMock()


@pytest_asyncio.fixture
async def client(seeded_db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the app; the database is initialised by the fixtures above."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def user_headers() -> dict[str, str]:
    return {"X-User-Id": "user_alice"}
