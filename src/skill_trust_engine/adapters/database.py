"""Primary database engine and session dependency.

The primary database holds quarantine entries, approval records, version
history, and advisories. Audit entries live behind the audit wall
(adapters/audit_wall.py) on their own engine.

Key exports:
- init_database(...): Call at startup to initialize the primary engine
- close_database(): Call at shutdown to dispose the engine
- get_engine(): The initialized engine (used by preflight)
- get_db_session(): FastAPI dependency yielding a primary DB session
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from skill_trust_engine.observability import get_logger

logger = get_logger(__name__)

# Module-level engine and session factory: initialized by init_database()
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(url: str, pool_size: int, max_overflow: int, pool_timeout: int) -> dict[str, Any]:
    """Pool options for create_async_engine. SQLite engines take none."""
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": pool_timeout,
        "pool_pre_ping": True,
    }


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def init_database(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 2,
    pool_timeout: int = 30,
) -> AsyncEngine:
    """Initialize the primary database engine and session factory.

    Args:
        database_url: SQLAlchemy async URL of the primary store.
        pool_size: Connection pool size.
        max_overflow: Max overflow connections above pool_size.
        pool_timeout: Seconds to wait for a connection before raising.

    Returns:
        The created engine.
    """
    global _engine, _session_factory  # noqa: PLW0603

    logger.info("Initializing primary database engine", pool_size=pool_size, max_overflow=max_overflow)
    _engine = create_async_engine(
        database_url,
        echo=False,
        **engine_options(database_url, pool_size, max_overflow, pool_timeout),
    )
    _session_factory = make_session_factory(_engine)
    return _engine


async def close_database() -> None:
    """Dispose the primary database engine."""
    global _engine, _session_factory  # noqa: PLW0603

    if _engine is not None:
        logger.info("Disposing primary database engine")
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_engine() -> AsyncEngine:
    """Return the primary engine.

    Raises:
        RuntimeError: If init_database() has not been called yet.
    """
    if _engine is None:
        raise RuntimeError("Primary database has not been initialized. Call init_database() first.")
    return _engine


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a primary database session.

    The session commits when the request handler returns and rolls back when
    it raises.

    Yields:
        AsyncSession: A session connected to the primary database.

    Raises:
        RuntimeError: If init_database() has not been called yet.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Primary database has not been initialized. "
            "Call init_database() in the application lifespan handler."
        )

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
