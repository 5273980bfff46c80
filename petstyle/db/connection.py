"""Database connection factory with retry logic.

Any SQLAlchemy async driver works. Synchronous URLs are rewritten to their
async counterpart so the same ``DATABASE_URL`` can be shared with Alembic.
"""

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from tenacity import retry, stop_after_attempt, wait_exponential

from .models import Base

# Default connection settings
DEFAULT_POOL_SIZE = 5
DEFAULT_MAX_OVERFLOW = 10
DEFAULT_POOL_TIMEOUT = 30
DEFAULT_POOL_RECYCLE = 1800  # 30 minutes

# Sync driver prefix -> async driver prefix
ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "postgresql+psycopg2://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
    "mssql+pyodbc://": "mssql+aioodbc://",
}


def to_async_url(url: str) -> str:
    """Rewrite a synchronous SQLAlchemy URL to use an async driver."""
    for sync_prefix, async_prefix in ASYNC_DRIVERS.items():
        if url.startswith(sync_prefix):
            return async_prefix + url[len(sync_prefix):]
    return url


def get_database_url() -> str:
    """Get database URL from environment.

    Raises:
        ValueError: If DATABASE_URL is not set.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise ValueError("Database connection string not found. Set DATABASE_URL")
    return to_async_url(url)


def create_engine(
    url: str | None = None,
    pool_size: int = DEFAULT_POOL_SIZE,
    max_overflow: int = DEFAULT_MAX_OVERFLOW,
    pool_timeout: int = DEFAULT_POOL_TIMEOUT,
    pool_recycle: int = DEFAULT_POOL_RECYCLE,
    echo: bool = False,
    **kwargs: Any,
) -> AsyncEngine:
    """Create an async SQLAlchemy engine with connection pooling.

    Args:
        url: Database URL. If None, reads from DATABASE_URL env var.
        pool_size: Number of connections to keep in the pool.
        max_overflow: Max connections beyond pool_size.
        pool_timeout: Seconds to wait for a connection from pool.
        pool_recycle: Seconds before recycling a connection.
        echo: If True, log all SQL statements.
        **kwargs: Additional engine arguments.

    Returns:
        Configured AsyncEngine instance.
    """
    url = to_async_url(url) if url else get_database_url()

    # SQLite pools do not accept sizing arguments
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
        )

    return create_async_engine(url, echo=echo, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory for the given engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


class DatabaseConnection:
    """Database connection manager with retry logic."""

    def __init__(
        self,
        url: str | None = None,
        pool_size: int = DEFAULT_POOL_SIZE,
        max_overflow: int = DEFAULT_MAX_OVERFLOW,
        echo: bool = False,
    ):
        """Initialize the database connection manager.

        Args:
            url: Database URL. If None, reads from DATABASE_URL env var.
            pool_size: Number of connections to keep in the pool.
            max_overflow: Max connections beyond pool_size.
            echo: If True, log all SQL statements.
        """
        self._url = url
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the database engine."""
        if self._engine is None:
            self._engine = create_engine(
                url=self._url,
                pool_size=self._pool_size,
                max_overflow=self._max_overflow,
                echo=self._echo,
            )
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = create_session_factory(self.engine)
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Create a new session context that commits on success.

        Usage:
            async with db.session() as session:
                result = await session.execute(query)
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except BaseException:
                await session.rollback()
                raise

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def connect(self) -> None:
        """Test the database connection with retry logic."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        """Close the database engine and all connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    async def create_tables(self) -> None:
        """Create all tables defined in the models."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


# Global database connection instance
_db: DatabaseConnection | None = None


def get_db() -> DatabaseConnection:
    """Get the global database connection instance."""
    global _db
    if _db is None:
        from petstyle.config import get_settings

        settings = get_settings().database
        _db = DatabaseConnection(
            url=settings.url or None,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            echo=settings.echo,
        )
    return _db
