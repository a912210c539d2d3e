"""
Protocol definitions for repository and unit of work interfaces.

Service code should depend on these contracts rather than on
``GenericRepository``/``UnitOfWork`` directly.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence, TypeVar, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession

from base_repository.core.repository.pagination import PaginatedResult
from base_repository.core.repository.specification import Specification
from base_repository.core.result import Result

T_Model = TypeVar("T_Model")
K = TypeVar("K")


@runtime_checkable
class IRepository(Protocol[T_Model, K]):
    """Data-access contract for one entity type."""

    async def get(self, id: K) -> Result[T_Model, Any]:
        ...

    async def find(self, *criteria: Any) -> Result[Sequence[T_Model], Any]:
        ...

    async def find_with_specification(
        self, spec: Specification[T_Model], *, tracking: bool = True
    ) -> Result[Sequence[T_Model], Any]:
        ...

    async def get_paginated(
        self, page_index: int, page_size: int, *criteria: Any, **options: Any
    ) -> Result[PaginatedResult[T_Model], Any]:
        ...

    async def add(self, entity: T_Model | None) -> Result[K, Any]:
        ...

    async def update(self, entity: T_Model | None) -> Result[bool, Any]:
        ...

    async def delete(self, entity: T_Model | None) -> Result[bool, Any]:
        ...

    async def save(self, timeout: float | None = None) -> int:
        ...


@runtime_checkable
class IUnitOfWork(Protocol):
    """Unit of Work contract: one shared session, many repositories."""

    def repository(self, entity_type: type[T_Model], key_type: type[K] = ...) -> IRepository[T_Model, K]:
        ...

    async def complete(self, timeout: float | None = None) -> int:
        ...

    async def rollback(self) -> None:
        ...

    @property
    def session(self) -> AsyncSession:
        ...
