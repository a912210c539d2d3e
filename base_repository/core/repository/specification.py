"""
Specification pattern for repository queries.

A ``Specification`` bundles filter criteria, one sort key, eager-load includes
and optional offset paging. ``SpecificationEvaluator`` turns it into a
SQLAlchemy ``Select``:

    spec = (
        Specification.for_criteria(Order.customer_id == customer_id)
        .order_descending(Order.created_at)
        .include(Order.lines)
        .paginate(skip=0, take=20)
    )
    result = await uow.repository(Order).find_with_specification(spec)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import QueryableAttribute, selectinload

T = TypeVar("T")


@dataclass(frozen=True)
class Specification(Generic[T]):
    """Immutable query descriptor; the builder helpers return modified copies."""

    criteria: tuple[Any, ...] = ()
    order_by: Any | None = None
    order_by_descending: Any | None = None
    includes: tuple[Any, ...] = ()
    skip: int = 0
    take: int = 0
    is_paginated: bool = False

    @classmethod
    def for_criteria(cls, *criteria: Any) -> Specification[T]:
        return cls(criteria=tuple(criteria))

    def where(self, *criteria: Any) -> Specification[T]:
        return replace(self, criteria=self.criteria + tuple(criteria))

    def order_ascending(self, key: Any) -> Specification[T]:
        return replace(self, order_by=key)

    def order_descending(self, key: Any) -> Specification[T]:
        return replace(self, order_by_descending=key)

    def include(self, *includes: Any) -> Specification[T]:
        return replace(self, includes=self.includes + tuple(includes))

    def paginate(self, skip: int, take: int) -> Specification[T]:
        return replace(self, skip=skip, take=take, is_paginated=True)


def loader_option(include: Any) -> Any:
    if isinstance(include, QueryableAttribute):
        return selectinload(include)
    # already a loader option such as joinedload(...) or a chained Load
    return include


class SpecificationEvaluator:
    """Applies a specification to a base query.

    Order is fixed: criteria, ascending sort, otherwise descending sort, then
    offset/limit when the specification is paginated, includes last. Nothing
    is validated; negative skip/take reach the database untouched.
    """

    @staticmethod
    def get_query(query: Select, spec: Specification[Any]) -> Select:
        if spec.criteria:
            query = query.where(*spec.criteria)

        if spec.order_by is not None:
            query = query.order_by(spec.order_by.asc())
        elif spec.order_by_descending is not None:
            query = query.order_by(spec.order_by_descending.desc())

        if spec.is_paginated:
            query = query.offset(spec.skip).limit(spec.take)

        for include in spec.includes:
            query = query.options(loader_option(include))

        return query

    @staticmethod
    def get_count_query(query: Select, spec: Specification[Any]) -> Select:
        """Count of rows matching the criteria; sort, paging and includes are ignored."""
        if spec.criteria:
            query = query.where(*spec.criteria)
        return select(func.count()).select_from(query.subquery())


__all__ = ["Specification", "SpecificationEvaluator"]
