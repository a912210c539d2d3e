"""
Unit of Work pattern implementation for transaction management.

The Unit of Work owns one database session and hands out one repository per
entity type, all bound to that session, so a single ``complete()`` persists
the changes made through any of them.

Example:
    async with UnitOfWork() as uow:
        customers = uow.repository(Customer)
        orders = uow.repository(Order)

        customer_id = (await customers.add(Customer(name="Ada"))).unwrap()
        await orders.add(Order(customer_id=customer_id, total_cents=1000))

        # Commit all changes atomically
        await uow.complete()
        # Or rollback on error (automatic on exception)
"""

from __future__ import annotations

import logging
import threading
from types import TracebackType
from typing import Any, Callable, Type

from sqlalchemy.ext.asyncio import AsyncSession

from base_repository.core.db import new_async_session
from base_repository.core.execution import ExecutionStrategy
from base_repository.core.logging import get_repository_logger
from base_repository.core.repository.base import GenericRepository
from base_repository.core.repository.tracking import commit_and_count, enable_change_counting
from base_repository.core.settings import get_settings

logger = logging.getLogger(__name__)

RepositoryFactory = Callable[[type, AsyncSession, logging.Logger], GenericRepository[Any, Any]]
LoggerFactory = Callable[[type], logging.Logger]


class UnitOfWork:
    """
    Unit of Work for coordinating database operations.

    Repositories are built on first request and cached per
    ``(entity type, key type)`` for the lifetime of the unit of work. Building
    and caching is guarded by a lock, so concurrent first requests from
    several threads still produce a single instance. The session itself is not
    thread-safe: a unit of work belongs to one request or task.

    The session's transaction begins with the first query, so an isolation
    level passed to ``execute_in_transaction`` must come before any read, or
    after ``complete()``/``rollback()``.

    Example:
        async with UnitOfWork() as uow:
            result = await uow.repository(Customer).get(1)
            if result.is_success():
                customer = result.unwrap()
                customer.active = False
                await uow.complete()
    """

    def __init__(
        self,
        session: AsyncSession | None = None,
        *,
        logger_factory: LoggerFactory = get_repository_logger,
        execution_strategy: ExecutionStrategy | None = None,
        default_page_size: int | None = None,
    ):
        """
        Initialize Unit of Work.

        Args:
            session: Optional existing session. If not provided, one is created
                on ``__aenter__`` and closed on exit.
            logger_factory: Resolves the logger handed to each repository.
            execution_strategy: Retry strategy shared by the repositories.
            default_page_size: Page size used when callers pass a non-positive one.
        """
        self._session = session
        self._should_close = session is None
        self._logger_factory = logger_factory
        self._execution_strategy = execution_strategy
        self._default_page_size = default_page_size
        self._repositories: dict[tuple[type, type], GenericRepository[Any, Any]] = {}
        self._factories: dict[type, RepositoryFactory] = {}
        self._lock = threading.Lock()
        if session is not None:
            enable_change_counting(session)

    async def __aenter__(self) -> UnitOfWork:
        if self._session is None:
            self._session = new_async_session()
            enable_change_counting(self._session)
        return self

    async def __aexit__(
        self,
        exc_type: Type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """
        Exit async context.

        Rolls back on exception; never commits on its own.
        """
        try:
            if exc_type is not None and self._session is not None:
                await self.rollback()
                logger.warning(
                    f"Transaction rolled back due to {exc_type.__name__}: {exc_val}"
                )
        finally:
            if self._should_close and self._session is not None:
                await self._session.close()
                self._session = None
                self._repositories.clear()

    @property
    def session(self) -> AsyncSession:
        """
        Get the current database session.

        Raises:
            RuntimeError: If session not initialized
        """
        if self._session is None:
            raise RuntimeError("Session not initialized. Use async with UnitOfWork().")
        return self._session

    def register(self, entity_type: type, factory: RepositoryFactory) -> None:
        """Use ``factory`` instead of ``GenericRepository`` for ``entity_type``."""
        with self._lock:
            self._factories[entity_type] = factory

    def repository(self, entity_type: type, key_type: type = int) -> GenericRepository[Any, Any]:
        """Return the cached repository for ``entity_type``, building it on first use."""
        key = (entity_type, key_type)
        with self._lock:
            repository = self._repositories.get(key)
            if repository is None:
                repository = self._build_repository(entity_type)
                self._repositories[key] = repository
        return repository

    def _build_repository(self, entity_type: type) -> GenericRepository[Any, Any]:
        session = self.session
        repo_logger = self._logger_factory(entity_type)
        factory = self._factories.get(entity_type)
        if factory is not None:
            repository = factory(entity_type, session, repo_logger)
        else:
            repository = GenericRepository(
                entity_type,
                session,
                repo_logger,
                execution_strategy=self._execution_strategy or ExecutionStrategy.from_settings(),
                default_page_size=self._default_page_size or get_settings().default_page_size,
            )
        logger.debug(f"Repository created for {entity_type.__name__}")
        return repository

    async def complete(self, timeout: float | None = None) -> int:
        """
        Commit the current transaction.

        All pending changes across all repositories are persisted.

        Returns:
            Number of entities inserted, updated or deleted.
        """
        session = self.session
        try:
            written = await commit_and_count(session, timeout)
        except Exception as e:
            logger.error(f"Error committing transaction: {e}", exc_info=True)
            await self.rollback()
            raise
        logger.debug(f"Transaction committed successfully ({written} change(s))")
        return written

    async def rollback(self) -> None:
        """Rollback the current transaction; pending changes are discarded."""
        try:
            await self.session.rollback()
            logger.debug("Transaction rolled back")
        except Exception as e:
            logger.error(f"Error rolling back transaction: {e}", exc_info=True)
            raise

    async def flush(self) -> None:
        """Flush pending changes to database without committing."""
        await self.session.flush()

    async def refresh(self, entity: Any) -> None:
        """Refresh entity from database."""
        await self.session.refresh(entity)


def create_uow(session: AsyncSession | None = None, **options: Any) -> UnitOfWork:
    """Factory function to create Unit of Work."""
    return UnitOfWork(session, **options)


__all__ = ["RepositoryFactory", "UnitOfWork", "create_uow"]
