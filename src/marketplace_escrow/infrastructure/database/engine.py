"""Async database engine and session management.

Provides:
    - get_session_factory: A sessionmaker bound to the engine (lazy singleton).
    - get_async_session: FastAPI dependency that yields a session per request.
    - unit_of_work: One transaction on a fresh session, used by the sweep worker
      so each confirmation is released in its own atomic unit.
    - init_db / close_db: Lifecycle hooks for FastAPI's lifespan.

Infrastructure failures (connection loss, pool exhaustion, lock timeouts) are
translated to TransientStoreFailure here and in the repositories, so callers
only ever see domain errors.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from marketplace_escrow.config import get_settings
from marketplace_escrow.domain.exceptions import TransientStoreFailure
from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = get_logger(__name__)

STORE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)

# Module-level singletons (initialized in init_db)
_engine = None
_session_factory = None


def _get_engine() -> AsyncEngine:
    """Get or create the async engine (lazy singleton)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        options: dict = {"pool_pre_ping": True, "echo": settings.db_echo_sql}
        if not settings.database_url.startswith("sqlite"):
            options.update(
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_timeout=settings.db_pool_timeout,
            )
        _engine = create_async_engine(settings.database_url, **options)
        logger.info(
            "database.engine_created",
            dialect=_engine.dialect.name,
            pool_size=settings.db_pool_size,
        )
    return _engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory with the settings every caller relies on."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory (lazy singleton)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(_get_engine())
    return _session_factory


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session.

    The session is automatically committed on success or rolled back on error.
    """
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except STORE_ERRORS as err:
            await session.rollback()
            raise TransientStoreFailure(f"Database unavailable: {err}") from err
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Run the block inside one transaction on a fresh session.

    Commits when the block exits cleanly, rolls back otherwise.
    """
    factory = session_factory or get_session_factory()
    try:
        async with factory() as session, session.begin():
            yield session
    except STORE_ERRORS as err:
        raise TransientStoreFailure(f"Database unavailable: {err}") from err


async def init_db() -> None:
    """Initialize the database engine and create tables if they don't exist.

    Called during FastAPI's lifespan startup. Outside development the schema
    is expected to be provisioned already.
    """
    from marketplace_escrow.infrastructure.database.orm_models import Base

    engine = _get_engine()
    settings = get_settings()

    if settings.is_development:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("database.tables_created")
    else:
        logger.info("database.skipping_create_all", reason="not in development mode")


async def check_db() -> None:
    """Round-trip a trivial query. Raises TransientStoreFailure when unreachable."""
    from sqlalchemy import text

    try:
        async with _get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except STORE_ERRORS as err:
        raise TransientStoreFailure(f"Database unavailable: {err}") from err


async def close_db() -> None:
    """Dispose of the database engine. Called during FastAPI's lifespan shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database.engine_disposed")
        _engine = None
        _session_factory = None
