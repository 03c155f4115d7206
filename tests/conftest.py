"""Shared test fixtures."""

import pytest
import pytest_asyncio

from devsearch.db.connection import create_connection
from devsearch.store.repository import DatabaseSearchRepository
from tests.fakes import FakeClock, FakeSource, MockEmbedder


@pytest_asyncio.fixture
async def db():
    """In-memory database with full schema and sqlite-vec."""
    conn = await create_connection(":memory:", embedding_dim=4)
    yield conn
    await conn.close()


@pytest.fixture
def clock():
    """Manually advanced clock shared by repository and indexer."""
    return FakeClock()


@pytest_asyncio.fixture
async def repository(db, clock):
    """Search repository backed by the in-memory DB."""
    return DatabaseSearchRepository(db, clock=clock)


@pytest.fixture
def embedder():
    """Deterministic 4-dimensional embedder."""
    return MockEmbedder()


@pytest.fixture
def source():
    """Empty in-memory document source."""
    return FakeSource()
