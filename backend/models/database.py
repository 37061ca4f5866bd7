"""
Database connection and session management.

Uses SQLAlchemy async. The engine is created lazily on first use:
- Postgres (asyncpg): a local connection pool keeps connections warm
- SQLite (aiosqlite): NullPool, one connection per session (local/dev/tests)

Stores open sessions from the shared session factory; each session checks out
a connection and returns it to the pool when closed.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, AsyncEngine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def normalize_database_url(url: str) -> str:
    """Ensure the URL names an async driver."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and "+aiosqlite" not in url:
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


_db_url: str = normalize_database_url(settings.DATABASE_URL)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def create_engine_for_url(url: str) -> AsyncEngine:
    """Build an async engine with pool settings suited to the backend."""
    url = normalize_database_url(url)
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=False, future=True, poolclass=NullPool)
        logger.info("Database engine created with NullPool (sqlite)")
        return engine

    engine = create_async_engine(
        url,
        echo=False,
        future=True,
        pool_size=5,        # Base connections kept warm
        max_overflow=10,    # Up to 15 total under burst load
        pool_recycle=300,   # Recycle connections every 5 min
        pool_pre_ping=True, # Verify connection is alive before checkout
    )
    logger.info("Database engine created with connection pool (pool_size=5, max_overflow=10)")
    return engine


def get_engine() -> AsyncEngine:
    """Get the application database engine (created once, reused)."""
    global _engine
    if _engine is None:
        _engine = create_engine_for_url(_db_url)
    return _engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,  # Don't auto-flush, we control when to commit
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the application session factory (created once, reused)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
        logger.info("Session factory created (will reuse pooled connections)")
    return _session_factory


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create all tables."""
    # Registers report_jobs on Base.metadata
    import models.report_job  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """
    Close the database engine and release all pooled connections.
    Call this on application shutdown.
    """
    global _engine, _session_factory
    if _engine is not None:
        pool_status = get_pool_status()
        logger.info(
            "Closing database pool: %d checked_in, %d checked_out",
            pool_status["checked_in"],
            pool_status["checked_out"]
        )
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database engine disposed, all connections closed")


def get_pool_status() -> dict[str, int | str]:
    """Get current connection pool status for monitoring."""
    if _engine is None:
        return {"pool_type": "not_initialized", "pool_size": 0, "checked_in": 0, "checked_out": 0, "overflow": 0}

    pool = _engine.pool
    if isinstance(pool, NullPool):
        return {"pool_type": "NullPool", "pool_size": 0, "checked_in": 0, "checked_out": 0, "overflow": 0}

    return {
        "pool_type": type(pool).__name__,
        "pool_size": pool.size(),
        "checked_in": pool.checkedin(),
        "checked_out": pool.checkedout(),
        "overflow": pool.overflow(),
    }
