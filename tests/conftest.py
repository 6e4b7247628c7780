"""
Pytest configuration and shared fixtures.

This module provides:
- Environment variable setup for tests
- In-memory SQLite storage per test
- A sample Note entity and repositories over it
- Deterministic clock and actor fakes
"""

import os
from uuid import uuid4

import pytest

# Set test environment variables BEFORE any docrepo imports
# This must happen first to ensure settings load with test values
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CONTAINER_NAME"] = "test-documents"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LOG_JSON"] = "true"

from docrepo.core.database import close_db, create_session_maker, get_async_engine, init_db  # noqa: E402
from docrepo.repositories.document import DocumentRepository  # noqa: E402
from docrepo.services.audit import FixedClock, StaticActorResolver  # noqa: E402
from docrepo.services.sql_container import SqlDocumentContainer  # noqa: E402
from tests.sample_entities import ACTOR_ID, T0, Note, notebook_partition  # noqa: E402


@pytest.fixture
def make_note():
    """
    Factory for unsaved notes.

    Returns:
        Callable accepting Note field overrides
    """
    def _make(**overrides) -> Note:
        data = {"id": uuid4(), "title": "Untitled"}
        data.update(overrides)
        return Note(**data)

    return _make


@pytest.fixture
async def engine():
    """
    Provide an in-memory database engine with the documents table created.

    Disposed after the test.
    """
    engine = get_async_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_maker(engine):
    return create_session_maker(engine)


@pytest.fixture
def container(session_maker):
    """Container named "notes" on the per-test database."""
    return SqlDocumentContainer(session_maker, name="notes")


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def actor():
    return StaticActorResolver(ACTOR_ID)


@pytest.fixture
def repo(container, clock, actor):
    """
    Note repository with the default (id-based) partition key.

    Returns:
        DocumentRepository[Note]
    """
    return DocumentRepository(container, Note, clock, actor)


@pytest.fixture
def notebook_repo(container, clock, actor):
    """
    Note repository partitioned by notebook, so batches can span many notes.

    Returns:
        DocumentRepository[Note]
    """
    return DocumentRepository(
        container,
        Note,
        clock,
        actor,
        partition_key=notebook_partition,
    )
