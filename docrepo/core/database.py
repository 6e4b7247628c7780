"""
Database engine, session factory and provisioning glue.

Creates the async SQLAlchemy engine that backs SqlDocumentContainer, the
session factory containers share, and helpers to ensure the documents table
exists. The engine is owned by the application: repositories and containers
never dispose of it.
"""

import logging
from typing import Optional

from sqlalchemy import event, func, select, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from docrepo.core.config import settings
from docrepo.models.base import Base
from docrepo.models.document import DocumentRecord

logger = logging.getLogger(__name__)


def get_async_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """
    Create and configure the async SQLAlchemy engine.

    For SQLite:
    - In-memory databases use StaticPool so every session sees the same data
    - check_same_thread=False for async compatibility
    - WAL journal mode for file databases

    Args:
        database_url: Connection URL (defaults to settings.database_url)
        echo: Echo SQL (defaults to settings.database_echo)

    Returns:
        Configured AsyncEngine instance
    """
    url = database_url or settings.database_url
    is_sqlite = url.startswith("sqlite")

    engine_kwargs = {
        "echo": settings.database_echo if echo is None else echo,
    }

    if is_sqlite:
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url:
            engine_kwargs["poolclass"] = StaticPool

    engine = create_async_engine(url, **engine_kwargs)

    if is_sqlite and ":memory:" not in url:
        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ANN001
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory shared by every container on this engine.

    Args:
        engine: Engine from get_async_engine()

    Returns:
        async_sessionmaker producing AsyncSession instances
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """
    Ensure the documents table exists.

    Safe to call repeatedly; existing tables are left untouched.

    Example:
        engine = get_async_engine()
        await init_db(engine)
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Document storage initialized", extra={"operation": "init_db"})


async def close_db(engine: AsyncEngine) -> None:
    """
    Dispose of the engine's connection pool.

    Call once at application shutdown, after every repository is done.
    """
    await engine.dispose()


class DatabaseHealthCheck:
    """
    Database health check utilities.

    Provides methods to verify store connectivity and readiness.
    """

    @staticmethod
    async def check_connection(session_maker: async_sessionmaker[AsyncSession]) -> bool:
        """
        Check if the database is reachable.

        Returns:
            True if a trivial query succeeds, False otherwise
        """
        try:
            async with session_maker() as session:
                await session.execute(text("SELECT 1"))
                return True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    @staticmethod
    async def count_documents(
        session_maker: async_sessionmaker[AsyncSession],
        container: Optional[str] = None,
    ) -> int:
        """
        Number of stored documents, including soft-deleted ones.

        Args:
            session_maker: Session factory
            container: Restrict the count to one container
        """
        stmt = select(func.count()).select_from(DocumentRecord)
        if container is not None:
            stmt = stmt.where(DocumentRecord.container == container)

        async with session_maker() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())
