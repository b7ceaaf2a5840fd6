"""Shared test fixtures.

Every test gets its own file-backed SQLite database (through aiosqlite) and an
engine whose notifications land in memory.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gamify.config import Settings
from gamify.database import close_db, create_tables, get_session_factory, init_db
from gamify.engine import GamificationEngine
from gamify.notifications.sink import InMemoryNotificationSink
from gamify.seed import seed_ladder_levels


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'gamify.db'}",
        environment="test",
        log_format="console",
        leaderboard_page_size=2,
    )


@pytest_asyncio.fixture
async def session_factory(settings: Settings) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh schema on a throwaway SQLite file."""
    await init_db(settings.database_url)
    await create_tables()
    yield get_session_factory()
    await close_db()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def sink() -> InMemoryNotificationSink:
    return InMemoryNotificationSink()


@pytest_asyncio.fixture
async def engine(session_factory, sink, settings) -> GamificationEngine:
    return GamificationEngine(session_factory, sink, settings)


@pytest_asyncio.fixture
async def laddered_engine(engine: GamificationEngine) -> GamificationEngine:
    """Engine with the starter ladder (0 / 100 / 300 / 600 / 1000) but no achievements."""
    async with engine.session_factory() as db:
        await seed_ladder_levels(db)
        await db.commit()
    return engine
