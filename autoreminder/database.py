"""Database connection and session management.

The engine is created lazily so it binds to the event loop that first uses
it (the scheduler's loop in production, the test loop under pytest).
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from autoreminder.config import settings

_engine: AsyncEngine | None = None
_async_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the database engine.

    When testing=True, uses NullPool so connections never outlive the
    event loop of a single test.
    """
    global _engine
    if _engine is None:
        if settings.testing:
            _engine = create_async_engine(
                settings.database_url,
                poolclass=NullPool,
            )
        else:
            # One connection per worker plus headroom for the API
            _engine = create_async_engine(
                settings.database_url,
                pool_size=settings.worker_pool_size + 2,
                max_overflow=10,
                pool_pre_ping=True,
            )
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get or create the session maker."""
    global _async_session_maker
    if _async_session_maker is None:
        _async_session_maker = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_maker


async def check_database_connection() -> bool:
    """Check if the database is reachable.

    Returns:
        True if database is connected, False otherwise.
    """
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
            return True
    except Exception:
        return False


async def close_database() -> None:
    """Close the database engine and all connections."""
    global _engine, _async_session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_maker = None
