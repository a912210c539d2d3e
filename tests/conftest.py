import os

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

TEST_ENV = {
    "DATABASE_URL": "sqlite+aiosqlite://",
    "LOG_LEVEL": "DEBUG",
    "LOG_FILE": "",
    "DEFAULT_PAGE_SIZE": "10",
    "DB_RETRY_MAX_ATTEMPTS": "3",
    "DB_RETRY_BASE_DELAY": "0",
    "DB_RETRY_MAX_DELAY": "0",
}

for key, value in TEST_ENV.items():
    os.environ[key] = value

from base_repository.domain.base import Base  # noqa: E402
from tests import models  # noqa: E402,F401


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch):
    """Force deterministic env for tests and reset cached settings."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)

    from base_repository.core import settings as settings_module

    settings_module.get_settings.cache_clear()
    yield
    settings_module.get_settings.cache_clear()


@pytest.fixture
async def engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()
