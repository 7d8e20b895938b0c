"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio

from pivotorm import AsyncSession, EngineConfig, create_engine


@pytest_asyncio.fixture
async def sqlite_pool():
    """Create an in-memory SQLite connection pool."""
    pool = await create_engine("sqlite::memory:")
    yield pool
    await pool.close()


@pytest_asyncio.fixture
async def small_batch_pool():
    """In-memory pool that streams two rows per fetch."""
    pool = await create_engine(config=EngineConfig(stream_batch_size=2))
    yield pool
    await pool.close()


@pytest.fixture
def session(sqlite_pool) -> AsyncSession:
    """A session on the in-memory pool."""
    return AsyncSession(sqlite_pool)
