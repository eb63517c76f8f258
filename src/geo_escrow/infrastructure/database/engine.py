"""Async database engine and session management.

Provides:
    - init_db(settings): create the engine and session factory (lifespan startup).
    - get_session_factory(): the async_sessionmaker the SQL stores are built on.
    - get_engine(): the engine, for health checks.
    - close_db(): dispose of the engine (lifespan shutdown).

The stores own their transactions (one short transaction per call), so
there is no request-scoped session dependency.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from geo_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from geo_escrow.config import Settings

logger = get_logger(__name__)

# Module-level handles (initialized in init_db)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(settings: Settings) -> AsyncEngine:
    """Create an async engine from settings."""
    options: dict[str, Any] = {"echo": settings.db_echo_sql}
    if not settings.database_url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_pre_ping=True,
        )
    engine = create_async_engine(settings.database_url, **options)
    logger.info(
        "database.engine_created",
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by every store. Objects stay readable after commit."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """Return the engine created by init_db()."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory created by init_db()."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


async def create_tables(engine: AsyncEngine) -> None:
    from geo_escrow.infrastructure.database.orm_models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(settings: Settings) -> async_sessionmaker[AsyncSession]:
    """Initialize the engine and create tables in development.

    Called during FastAPI's lifespan startup. In production the schema is
    managed outside the application.
    """
    global _engine, _session_factory
    if _engine is None:
        _engine = build_engine(settings)
        _session_factory = build_session_factory(_engine)

    if settings.is_development:
        await create_tables(_engine)
        logger.info("database.tables_created")
    else:
        logger.info("database.skipping_create_all", reason="not in development mode")
    return get_session_factory()


async def close_db() -> None:
    """Dispose of the database engine. Called during FastAPI's lifespan shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database.engine_disposed")
        _engine = None
        _session_factory = None
