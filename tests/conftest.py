"""Shared test fixtures for the sync test suite."""

import time
from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from app.core.database import Base, enable_foreign_keys
# Import all models so their metadata is registered on Base
import app.models.database  # noqa: F401
from app.models.database import SyncStatus, Token, User
from app.services.store import ActivityStore

ATHLETE_ID = "12345"


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """
    Provide a fresh SQLite database per test.

    File-backed so that every session the code under test opens sees the
    same data, the way it would in production.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
    )
    enable_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def async_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def store(session_maker):
    return ActivityStore(session_maker)


@pytest_asyncio.fixture
async def athlete(session_maker):
    """An athlete with a valid (unexpired) token."""
    async with session_maker() as session:
        session.add(User(
            athlete_id=ATHLETE_ID,
            sync_status=SyncStatus.NOT_STARTED,
            sync_progress=0,
            created_at=datetime(2025, 1, 1),
        ))
        await session.flush()
        session.add(Token(
            athlete_id=ATHLETE_ID,
            access_token="access-1",
            refresh_token="refresh-1",
            expires_at=int(time.time()) + 3600,
        ))
        await session.commit()
    return ATHLETE_ID
