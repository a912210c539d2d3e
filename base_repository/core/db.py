from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import MetaData
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from base_repository.core.settings import Settings, get_settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_kwargs(settings: Settings) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"echo": settings.sql_echo}
    if not settings.is_sqlite:
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_pre_ping=True,
            pool_recycle=settings.db_pool_recycle,
        )
    return kwargs


def build_engine(settings: Settings | None = None) -> AsyncEngine:
    """Create an AsyncEngine for the configured DATABASE_URL."""
    settings = settings or get_settings()
    try:
        parsed = make_url(settings.database_url)
    except ArgumentError as exc:
        raise RuntimeError(f"Invalid DATABASE_URL: {exc}") from exc

    logger.info(
        "Database dialect: %s (%s)",
        parsed.drivername,
        parsed.render_as_string(hide_password=True),
    )
    return create_async_engine(settings.database_url, **_engine_kwargs(settings))


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            expire_on_commit=False,
            class_=AsyncSession,
        )
    return _session_factory


def new_async_session() -> AsyncSession:
    """Return a raw AsyncSession instance."""
    return get_session_factory()()


@asynccontextmanager
async def async_session() -> AsyncIterator[AsyncSession]:
    session = new_async_session()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_models(metadata: MetaData) -> None:
    """Create every table of ``metadata`` that does not exist yet."""
    async with get_engine().begin() as conn:
        await conn.run_sync(metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections and forget the engine (settings may change)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


__all__ = [
    "async_session",
    "build_engine",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "init_models",
    "new_async_session",
]
