"""
Engine and session lifecycle.

The API and the notification worker each own one engine for their
process, created by init_db() at startup and disposed by close_db().
Units of work run in sessions from get_session(); services commit
explicitly, and get_session() rolls back whatever a failing caller left
behind.
"""

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

from urbanwatch.config import get_logger, get_settings

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory shared by the API, the worker and tests.

    Objects stay loaded after commit; services build event snapshots
    from them after committing.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def build_engine(
    database_url: str,
    *,
    pool_size: int,
    max_overflow: int,
    statement_timeout_ms: int | None = None,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create the async engine for a database URL.

    PostgreSQL connections get a server-side statement timeout.
    """
    connect_args: dict[str, Any] = {}
    if statement_timeout_ms and database_url.startswith("postgresql+asyncpg"):
        connect_args["server_settings"] = {"statement_timeout": str(statement_timeout_ms)}

    return create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        echo=echo,
        connect_args=connect_args,
    )


async def init_db(*, pool_size: int = 5, max_overflow: int = 10, echo: bool = False) -> None:
    """
    Create this process's engine and session factory.

    Args:
        pool_size: Connections kept open (the worker uses fewer than the API).
        max_overflow: Extra connections allowed under load.
        echo: Log SQL statements; honoured in development only.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        logger.warning("Database already initialized, skipping")
        return

    settings = get_settings()
    _engine = build_engine(
        settings.database_url.get_secret_value(),
        pool_size=pool_size,
        max_overflow=max_overflow,
        statement_timeout_ms=settings.db_statement_timeout_ms,
        echo=echo and settings.is_development,
    )
    _async_session_factory = create_session_factory(_engine)

    logger.info("Database initialized", pool_size=pool_size, max_overflow=max_overflow)


async def close_db() -> None:
    """Dispose of the engine; safe to call when never initialized."""
    global _engine, _async_session_factory

    if _engine is None:
        return

    await _engine.dispose()
    _engine = None
    _async_session_factory = None
    logger.info("Database connection closed")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Raises:
        RuntimeError: If init_db() has not run in this process.
    """
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Open a session for one unit of work.

    Commits on clean exit and rolls back if the block raises.

    Example:
        async with get_session() as session:
            concern = await get_concern_by_id(session, concern_id)
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def health_check() -> bool:
    """True if the database answers a trivial query."""
    if _engine is None:
        return False
    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return False
