"""
toolmount.models.database - Database Configuration

Provides database connection and session management:
- get_engine: Create SQLAlchemy async engine
- get_sessionmaker: Create async session factory
- create_tables: Create all tables on an engine (tests, local development)
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from toolmount.models.base import Base
from toolmount.settings import get_settings


def get_database_url() -> str:
    """
    Get database URL from settings.

    Defaults to local PostgreSQL if not set.
    """
    return get_settings().database_url


def get_engine(database_url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """
    Create SQLAlchemy async engine.

    Args:
        database_url: Database connection string (uses settings if not provided)
        echo: Whether to echo SQL queries (uses settings if not provided)

    Returns:
        AsyncEngine (PostgreSQL/asyncpg in production, aiosqlite in tests)
    """
    url = database_url or get_database_url()
    if echo is None:
        echo = get_settings().database_echo

    if url.startswith("sqlite"):
        # SQLite has no connection pool sizing
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,
        max_overflow=20,
    )


def get_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create async session factory.

    Args:
        engine: SQLAlchemy async engine

    Returns:
        async_sessionmaker for creating database sessions
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Don't expire objects after commit
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables on an existing engine (tests, local development)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

