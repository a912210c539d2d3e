"""FastAPI dependency injection for database access.

Provides per-request AsyncSession and UnitOfWork instances with automatic
cleanup.
"""

from typing import AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from base_repository.core.db import new_async_session
from base_repository.core.uow import UnitOfWork


async def get_async_session() -> AsyncIterator[AsyncSession]:
    """
    FastAPI dependency to provide AsyncSession per request.

    Rolls back when the request handler raises and always closes the session.
    """
    session = new_async_session()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def get_uow(
    session: AsyncSession = Depends(get_async_session),
) -> AsyncIterator[UnitOfWork]:
    """
    FastAPI dependency to provide UnitOfWork per request.

    Usage:
        @router.post("/customers")
        async def create_customer(data: CustomerIn, uow: UnitOfWork = Depends(get_uow)):
            result = await uow.repository(Customer).add(Customer(**data.model_dump()))
            await uow.complete()
            return {"id": result.unwrap()}

    No auto-commit: handlers call ``uow.complete()`` explicitly.
    """
    uow = UnitOfWork(session=session)
    async with uow:
        yield uow


AsyncSessionDep = Depends(get_async_session)
UnitOfWorkDep = Depends(get_uow)
