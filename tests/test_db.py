from dataclasses import replace

import pytest
from sqlalchemy import select

from base_repository.core import db
from base_repository.core.settings import get_settings
from base_repository.domain.base import Base
from tests.models import Customer


@pytest.fixture
async def configured_engine():
    await db.dispose_engine()
    yield
    await db.dispose_engine()


def test_build_engine_rejects_invalid_url():
    settings = replace(get_settings(), database_url="not a database url")

    with pytest.raises(RuntimeError, match="Invalid DATABASE_URL"):
        db.build_engine(settings)


def test_sqlite_engine_skips_pool_options():
    kwargs = db._engine_kwargs(get_settings())

    assert kwargs == {"echo": False}


def test_server_engine_gets_pool_options():
    settings = replace(
        get_settings(),
        database_url="postgresql+asyncpg://app:secret@db/app",
        db_pool_size=7,
    )

    kwargs = db._engine_kwargs(settings)

    assert kwargs["pool_size"] == 7
    assert kwargs["pool_pre_ping"] is True
    assert kwargs["pool_recycle"] == settings.db_pool_recycle


@pytest.mark.asyncio
async def test_engine_and_factory_are_shared(configured_engine):
    assert db.get_engine() is db.get_engine()
    assert db.get_session_factory() is db.get_session_factory()
    assert db.get_engine().url.drivername == "sqlite+aiosqlite"


@pytest.mark.asyncio
async def test_init_models_and_async_session(configured_engine):
    await db.init_models(Base.metadata)

    async with db.async_session() as session:
        session.add(Customer(name="Ada"))
        await session.commit()

    async with db.async_session() as session:
        names = (await session.execute(select(Customer.name))).scalars().all()

    assert names == ["Ada"]


@pytest.mark.asyncio
async def test_async_session_rolls_back_on_error(configured_engine):
    await db.init_models(Base.metadata)

    with pytest.raises(RuntimeError):
        async with db.async_session() as session:
            session.add(Customer(name="ghost"))
            await session.flush()
            raise RuntimeError("request failed")

    async with db.async_session() as session:
        assert (await session.execute(select(Customer))).first() is None


@pytest.mark.asyncio
async def test_dispose_engine_forgets_engine(configured_engine):
    engine = db.get_engine()

    await db.dispose_engine()

    assert db.get_engine() is not engine
