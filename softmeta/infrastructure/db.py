"""
Database configuration and session management.
Uses SQLAlchemy 2.0 asyncio engine and sessions.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from softmeta.config.settings import settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_kwargs(url: str) -> dict:
    """Engine arguments for the configured backend."""
    kwargs: dict = {"echo": settings.sql_echo}
    if url.startswith("sqlite") and ":memory:" in url:
        # One shared connection, otherwise every checkout sees an empty database
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_pre_ping"] = settings.pool_pre_ping
    return kwargs


def get_engine() -> AsyncEngine:
    """Return the process-wide AsyncEngine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory bound to the process-wide engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency-style generator for database sessions.

    Usage:
        @app.get("/widgets")
        async def list_widgets(db: AsyncSession = Depends(get_db)):
            repo = SoftDeleteRepository.for_model(Widget, db)
            return await repo.find()

    The session is closed after the caller is done with it.
    """
    async with get_session_factory()() as db:
        yield db


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions outside of a request.

    Usage:
        async with get_db_context() as db:
            await SoftDeleteRepository.for_model(Widget, db).count()
    """
    async with get_session_factory()() as db:
        yield db


async def dispose_engine() -> None:
    """Dispose the engine and drop cached factories (shutdown and tests)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
