"""Engine and session lifecycle for the billing record store."""

import os
import logging
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Optional
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from . import models

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./covetalks.db"

# Hosted Postgres providers hand out sync-style URLs
_ASYNC_DRIVER_PREFIXES = (
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)

# Process-wide engine used by the API; the CLI and tests bring their own
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """Return DATABASE_URL rewritten for an async driver, or the local SQLite file."""
    url = os.getenv("DATABASE_URL")
    if not url:
        return DEFAULT_DATABASE_URL
    for prefix, async_prefix in _ASYNC_DRIVER_PREFIXES:
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
    Create an async engine for the given URL.

    SQLite gets a single shared connection so in-memory databases survive
    across sessions; other backends get a sized connection pool.
    """
    url = database_url or get_database_url()

    options: Dict[str, Any]
    if url.startswith("sqlite"):
        options = {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    else:
        options = {"pool_size": pool_size, "max_overflow": max_overflow}

    return sa_create_async_engine(url, echo=echo, **options)


def _make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Records stay readable after commit for building API responses
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """
    Return a session factory bound to ``engine``, or the one set up by init_db().

    Raises:
        RuntimeError: If no engine is given and init_db() has not run.
    """
    if engine is not None:
        return _make_session_factory(engine)
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


async def init_db(
    database_url: Optional[str] = None,
    echo: bool = False,
    create_tables: bool = True,
) -> None:
    """Open the process-wide engine and create missing tables."""
    global _engine, _session_factory

    _engine = create_async_engine(database_url, echo=echo)
    _session_factory = _make_session_factory(_engine)
    logger.info(f"Connected to {_engine.url.render_as_string(hide_password=True)}")

    if create_tables:
        async with _engine.begin() as conn:
            await conn.run_sync(models.Base.metadata.create_all)
        logger.info("Billing tables are in place")


async def close_db() -> None:
    """Dispose of the process-wide engine."""
    global _engine, _session_factory

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database connection closed")


@asynccontextmanager
async def _unit_of_work(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    # Commit on success, roll everything back on any error
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one committed-or-rolled-back session per request.

    Example:
        @router.post("/subscriptions/sync")
        async def sync(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with _unit_of_work(get_async_session_factory()) as session:
        yield session


def get_db_context(engine: Optional[AsyncEngine] = None):
    """
    Session context for code running outside a request, such as the CLI.

    Example:
        async with get_db_context(engine) as db:
            account = await db.get(Account, account_id)
    """
    return _unit_of_work(get_async_session_factory(engine))
