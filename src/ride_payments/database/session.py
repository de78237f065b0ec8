"""Engine and session factory for the SQL booking store."""

import os
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./bookings.db"

# Driver prefixes rewritten to their async equivalents
_ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def get_database_url(database_url: Optional[str] = None) -> str:
    """Resolve the booking database URL.

    Uses ``database_url`` if given, else DATABASE_URL, else a local SQLite
    file. Plain PostgreSQL and SQLite URLs are switched to the asyncpg and
    aiosqlite drivers.
    """
    url = database_url or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
    for prefix, async_prefix in _ASYNC_DRIVERS.items():
        if url.startswith(prefix):
            return async_prefix + url[len(prefix):]
    return url


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Create the async engine behind a SqlBookingStore.

    In-memory SQLite shares one connection so every session sees the same
    database. Server databases get a checked connection pool.

    Args:
        database_url: Database connection URL. If None, uses get_database_url().
        echo: If True, log all SQL statements.
        pool_size: Connections kept open for server databases.
        max_overflow: Extra connections allowed beyond pool_size.
    """
    url = get_database_url(database_url)

    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            options["poolclass"] = StaticPool
        logger.debug(f"Using SQLite booking database {url}")
        return sa_create_async_engine(url, echo=echo, **options)

    return sa_create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
    )


def get_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
