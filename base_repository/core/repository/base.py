"""
Generic repository over one SQLAlchemy mapped class.

Every data operation returns a ``Result``; database errors are logged and
wrapped into ``DatabaseError`` instead of being raised, while a missing row is
reported as ``NotFoundError``. Operations that manage the transaction itself
(``save``, ``execute_in_transaction``) and the streaming ``get_all`` raise.
"""

from __future__ import annotations

import logging
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Generic,
    Iterable,
    Mapping,
    Sequence,
    TypeVar,
    cast,
)

from sqlalchemy import Select, func, select
from sqlalchemy import delete as sa_delete
from sqlalchemy import inspect as sa_inspect
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, MultipleResultsFound, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from base_repository.core.execution import ExecutionStrategy
from base_repository.core.logging import get_repository_logger
from base_repository.core.repository.pagination import (
    DEFAULT_PAGE_SIZE,
    PaginatedResult,
    normalize_page,
    page_offset,
)
from base_repository.core.repository.specification import (
    Specification,
    SpecificationEvaluator,
    loader_option,
)
from base_repository.core.repository.tracking import commit_and_count, enable_change_counting
from base_repository.core.result import (
    ConflictError,
    DatabaseError,
    Failure,
    NotFoundError,
    Result,
    ValidationError,
    failure,
    success,
)
from base_repository.domain.base import is_soft_deletable

T_Model = TypeVar("T_Model")
K = TypeVar("K")
R = TypeVar("R")


class GenericRepository(Generic[T_Model, K]):
    """
    CRUD, filtering, pagination and specification queries for one model.

    Type Parameters:
        T_Model: The SQLAlchemy mapped class this repository manages
        K: Type of the model's primary key

    Example:
        repo = GenericRepository[Customer, int](Customer, session)
        result = await repo.add(Customer(name="Ada"))
        if result.is_success():
            customer_id = result.unwrap()
            await repo.save()
    """

    def __init__(
        self,
        model: type[T_Model],
        session: AsyncSession,
        logger: logging.Logger | None = None,
        *,
        execution_strategy: ExecutionStrategy | None = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.model = model
        self.session = session
        self.logger = logger or get_repository_logger(model)
        self.execution_strategy = execution_strategy or ExecutionStrategy()
        self.default_page_size = default_page_size
        enable_change_counting(session)

    @property
    def model_name(self) -> str:
        return self.model.__name__

    @property
    def primary_key(self) -> Any | None:
        """The single primary-key column, or None for composite/unmapped keys."""
        columns = sa_inspect(self.model).primary_key
        if len(columns) != 1:
            return None
        return columns[0]

    def _database_failure(self, operation: str, exc: SQLAlchemyError) -> Failure[DatabaseError]:
        self.logger.error(f"Database error in {self.model_name}.{operation}", exc_info=True)
        return failure(
            DatabaseError(
                operation=f"{self.model_name}.{operation}",
                message=str(exc),
                original_exception=exc,
            )
        )

    async def _insert_failure(
        self, operation: str, exc: SQLAlchemyError
    ) -> Failure[ConflictError | DatabaseError]:
        """
        Describe a failed insert flush and roll the session back.

        A failed flush leaves the session unusable until it is rolled back, so
        the whole transaction is discarded, including changes still pending
        from other repositories sharing the session.
        """
        if isinstance(exc, IntegrityError):
            self.logger.warning(f"Integrity error in {self.model_name}.{operation}(): {exc}")
            outcome: Failure[Any] = failure(
                ConflictError(
                    entity_type=self.model_name,
                    message=f"Constraint violation: {exc.orig}",
                    original_exception=exc,
                )
            )
        else:
            outcome = self._database_failure(operation, exc)
        await self.session.rollback()
        return outcome

    def _missing_entity(self, operation: str) -> Failure[ValidationError]:
        self.logger.warning(f"{self.model_name}.{operation}() called without an entity")
        return failure(ValidationError(field="entity", message="entity is required"))

    def _default_order(self) -> Any | None:
        return self.primary_key

    def _apply_includes(self, stmt: Select, includes: Iterable[Any]) -> Select:
        for include in includes:
            stmt = stmt.options(loader_option(include))
        return stmt

    async def _fetch_all(self, stmt: Select, *, tracking: bool = True) -> list[T_Model]:
        known = None if tracking else set(self.session.identity_map.keys())
        result = await self.session.execute(stmt)
        entities = list(result.scalars().unique().all())
        if known is not None:
            self._detach(entities, known)
        return entities

    def _detach(self, entities: Iterable[T_Model], known: set[Any]) -> None:
        # entities tracked before the query stay attached
        for entity in entities:
            if sa_inspect(entity).key not in known:
                self.session.expunge(entity)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add(
        self, entity: T_Model | None
    ) -> Result[K, ValidationError | ConflictError | DatabaseError]:
        """
        Add a new entity and return its database-assigned identifier.

        The entity is flushed (not committed) so the identifier is available;
        call ``save()`` or ``UnitOfWork.complete()`` to persist it. When the
        flush fails the session is rolled back and stays usable.
        """
        if entity is None:
            return self._missing_entity("add")
        if self.primary_key is None:
            self.logger.warning(f"{self.model_name} has no single-column identifier")
            return failure(
                ValidationError(
                    field="id",
                    message=f"{self.model_name} has no single-column identifier",
                )
            )

        try:
            self.session.add(entity)
            await self.session.flush()
            identity = sa_inspect(entity).identity
        except SQLAlchemyError as e:
            return await self._insert_failure("add", e)

        if not identity:
            return failure(
                ValidationError(field="id", message="no identifier was assigned")
            )
        return success(cast(K, identity[0]))

    async def add_range(
        self, entities: Iterable[T_Model] | None
    ) -> Result[int, ConflictError | DatabaseError]:
        """Add many entities at once; returns how many were added."""
        items = list(entities or ())
        if not items:
            return success(0)

        try:
            self.session.add_all(items)
            await self.session.flush()
        except SQLAlchemyError as e:
            return await self._insert_failure("add_range", e)

        return success(len(items))

    async def update(self, entity: T_Model | None) -> Result[bool, ValidationError | DatabaseError]:
        """Mark ``entity`` (attached or detached) for update on the next flush."""
        if entity is None:
            return self._missing_entity("update")
        try:
            await self.session.merge(entity)
        except SQLAlchemyError as e:
            return self._database_failure("update", e)
        return success(True)

    async def delete(self, entity: T_Model | None) -> Result[bool, ValidationError | DatabaseError]:
        """Mark a persisted entity for removal on the next flush."""
        if entity is None:
            return self._missing_entity("delete")
        try:
            await self.session.delete(entity)
        except SQLAlchemyError as e:
            return self._database_failure("delete", e)
        return success(True)

    async def soft_delete(
        self, id: K
    ) -> Result[bool, ValidationError | NotFoundError | DatabaseError]:
        """
        Flag the entity with key ``id`` as deleted.

        Only models declaring ``SoftDeleteMixin`` can be soft-deleted; other
        models fail with ``ValidationError`` before anything is loaded.
        """
        if not is_soft_deletable(self.model):
            self.logger.warning(f"{self.model_name} does not support soft delete")
            return failure(
                ValidationError(
                    field="is_deleted",
                    message=f"{self.model_name} is not soft-deletable",
                )
            )

        found = await self.get(id)
        if isinstance(found, Failure):
            return found

        entity = found.value
        entity.is_deleted = True  # type: ignore[attr-defined]
        return success(True)

    async def update_where(
        self, *criteria: Any, values: Mapping[str, Any]
    ) -> Result[int, ValidationError | DatabaseError]:
        """Set-based UPDATE without loading entities; returns affected rows."""
        if not values:
            return failure(ValidationError(field="values", message="nothing to update"))
        try:
            stmt = sa_update(self.model).where(*criteria).values(**values)
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            return self._database_failure("update_where", e)
        return success(result.rowcount or 0)

    async def delete_where(self, *criteria: Any) -> Result[int, DatabaseError]:
        """Set-based DELETE without loading entities; returns affected rows."""
        try:
            stmt = sa_delete(self.model).where(*criteria)
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            return self._database_failure("delete_where", e)
        return success(result.rowcount or 0)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(self) -> Select:
        """Plain ``SELECT`` of the model for ad hoc composition."""
        return select(self.model)

    async def get(self, id: K) -> Result[T_Model, ValidationError | NotFoundError | DatabaseError]:
        """Get entity by primary key (served from the identity map when possible)."""
        if id is None:
            return failure(ValidationError(field="id", message="id is required"))
        try:
            entity = await self.session.get(self.model, id)
        except SQLAlchemyError as e:
            return self._database_failure(f"get(id={id})", e)

        if entity is None:
            return failure(NotFoundError(entity_type=self.model_name, entity_id=id))
        return success(entity)

    async def get_by(self, *criteria: Any) -> Result[T_Model, NotFoundError | DatabaseError]:
        """First entity matching ``criteria``."""
        return await self.get_first(*criteria)

    async def get_first(
        self,
        *criteria: Any,
        includes: Sequence[Any] = (),
        tracking: bool = True,
    ) -> Result[T_Model, NotFoundError | DatabaseError]:
        stmt = self._apply_includes(self.query().where(*criteria), includes).limit(1)
        try:
            entities = await self._fetch_all(stmt, tracking=tracking)
        except SQLAlchemyError as e:
            return self._database_failure("get_first", e)

        if not entities:
            return failure(NotFoundError(entity_type=self.model_name))
        return success(entities[0])

    async def get_single(
        self,
        *criteria: Any,
        includes: Sequence[Any] = (),
        tracking: bool = True,
    ) -> Result[T_Model, NotFoundError | DatabaseError]:
        """Exactly one matching entity; more than one match is a ``DatabaseError``."""
        stmt = self._apply_includes(self.query().where(*criteria), includes).limit(2)
        try:
            entities = await self._fetch_all(stmt, tracking=tracking)
            if len(entities) > 1:
                raise MultipleResultsFound("Multiple rows were found when exactly one was required")
        except SQLAlchemyError as e:
            return self._database_failure("get_single", e)

        if not entities:
            return failure(NotFoundError(entity_type=self.model_name))
        return success(entities[0])

    async def get_all(self) -> AsyncIterator[T_Model]:
        """Stream every entity of the table; errors propagate to the consumer."""
        result = await self.session.stream_scalars(self.query())
        async for entity in result:
            yield entity

    async def find(self, *criteria: Any) -> Result[Sequence[T_Model], DatabaseError]:
        """All tracked entities matching ``criteria`` (all rows without criteria)."""
        try:
            entities = await self._fetch_all(self.query().where(*criteria))
        except SQLAlchemyError as e:
            return self._database_failure("find", e)
        return success(entities)

    async def get_all_as_no_tracking(self, *criteria: Any) -> Result[Sequence[T_Model], DatabaseError]:
        """Matching entities detached from the session (read-only use)."""
        try:
            entities = await self._fetch_all(self.query().where(*criteria), tracking=False)
        except SQLAlchemyError as e:
            return self._database_failure("get_all_as_no_tracking", e)
        return success(entities)

    async def find_with_specification(
        self,
        spec: Specification[T_Model],
        *,
        tracking: bool = True,
    ) -> Result[Sequence[T_Model], DatabaseError]:
        stmt = SpecificationEvaluator.get_query(self.query(), spec)
        try:
            entities = await self._fetch_all(stmt, tracking=tracking)
        except SQLAlchemyError as e:
            return self._database_failure("find_with_specification", e)
        return success(entities)

    async def get_with_specification(
        self,
        spec: Specification[T_Model],
        *,
        tracking: bool = True,
    ) -> Result[T_Model, NotFoundError | DatabaseError]:
        stmt = SpecificationEvaluator.get_query(self.query(), spec).limit(1)
        try:
            entities = await self._fetch_all(stmt, tracking=tracking)
        except SQLAlchemyError as e:
            return self._database_failure("get_with_specification", e)

        if not entities:
            return failure(NotFoundError(entity_type=self.model_name))
        return success(entities[0])

    async def count_with_specification(self, spec: Specification[T_Model]) -> Result[int, DatabaseError]:
        stmt = SpecificationEvaluator.get_count_query(self.query(), spec)
        try:
            total = (await self.session.execute(stmt)).scalar()
        except SQLAlchemyError as e:
            return self._database_failure("count_with_specification", e)
        return success(total or 0)

    async def exists(self, *criteria: Any) -> Result[bool, DatabaseError]:
        try:
            stmt = select(self.query().where(*criteria).exists())
            found = (await self.session.execute(stmt)).scalar()
        except SQLAlchemyError as e:
            return self._database_failure("exists", e)
        return success(bool(found))

    async def count(self, *criteria: Any) -> Result[int, DatabaseError]:
        try:
            stmt = select(func.count()).select_from(self.model).where(*criteria)
            total = (await self.session.execute(stmt)).scalar()
        except SQLAlchemyError as e:
            return self._database_failure("count", e)
        return success(total or 0)

    # ------------------------------------------------------------------
    # Pagination and projection
    # ------------------------------------------------------------------

    def _ordered(self, stmt: Select, order_by: Any | None, descending: bool) -> Select:
        key = order_by if order_by is not None else self._default_order()
        if key is None:
            return stmt
        return stmt.order_by(key.desc() if descending else key.asc())

    async def _count_rows(self, stmt: Select) -> int:
        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        return (await self.session.execute(count_stmt)).scalar() or 0

    async def get_paginated(
        self,
        page_index: int,
        page_size: int,
        *criteria: Any,
        order_by: Any | None = None,
        descending: bool = False,
        includes: Sequence[Any] = (),
        tracking: bool = True,
    ) -> Result[PaginatedResult[T_Model], DatabaseError]:
        """
        Offset pagination.

        ``page_index`` is 1-based; values <= 0 become 1, ``page_size`` <= 0
        becomes the default page size. Rows are ordered by ``order_by``
        (primary key when omitted) so pages are stable.
        """
        page_index, page_size = normalize_page(page_index, page_size, self.default_page_size)
        base = self.query().where(*criteria)
        stmt = self._ordered(base, order_by, descending)
        stmt = self._apply_includes(stmt, includes)
        stmt = stmt.offset(page_offset(page_index, page_size)).limit(page_size)

        try:
            total = await self._count_rows(base)
            items = await self._fetch_all(stmt, tracking=tracking)
        except SQLAlchemyError as e:
            return self._database_failure("get_paginated", e)

        return success(
            PaginatedResult(
                total_count=total,
                page_index=page_index,
                page_size=page_size,
                items=tuple(items),
            )
        )

    async def get_paginated_projection(
        self,
        selector: Any,
        page_index: int,
        page_size: int,
        *criteria: Any,
        order_by: Any | None = None,
        descending: bool = False,
    ) -> Result[PaginatedResult[Any], DatabaseError]:
        """Offset pagination returning ``selector`` values instead of entities."""
        page_index, page_size = normalize_page(page_index, page_size, self.default_page_size)
        base = self._projection(selector).where(*criteria)
        stmt = self._ordered(base, order_by, descending)
        stmt = stmt.offset(page_offset(page_index, page_size)).limit(page_size)

        try:
            total = await self._count_rows(base)
            items = await self._fetch_projection(stmt, selector)
        except SQLAlchemyError as e:
            return self._database_failure("get_paginated_projection", e)

        return success(
            PaginatedResult(
                total_count=total,
                page_index=page_index,
                page_size=page_size,
                items=tuple(items),
            )
        )

    async def get_after(
        self,
        key: Any,
        cursor: Any | None,
        take: int,
        *criteria: Any,
        descending: bool = False,
        includes: Sequence[Any] = (),
        tracking: bool = True,
    ) -> Result[Sequence[T_Model], DatabaseError]:
        """
        Seek (keyset) pagination.

        Returns up to ``take`` entities whose ``key`` is strictly greater than
        ``cursor`` (strictly less when ``descending``), ordered by ``key``.
        ``cursor=None`` starts from the first row.
        """
        if take <= 0:
            take = self.default_page_size

        stmt = self.query().where(*criteria)
        if cursor is not None:
            stmt = stmt.where(key < cursor if descending else key > cursor)
        stmt = stmt.order_by(key.desc() if descending else key.asc()).limit(take)
        stmt = self._apply_includes(stmt, includes)

        try:
            entities = await self._fetch_all(stmt, tracking=tracking)
        except SQLAlchemyError as e:
            return self._database_failure("get_after", e)
        return success(entities)

    def _projection(self, selector: Any) -> Select:
        columns = selector if isinstance(selector, (tuple, list)) else (selector,)
        return select(*columns).select_from(self.model)

    async def _fetch_projection(self, stmt: Select, selector: Any) -> list[Any]:
        result = await self.session.execute(stmt)
        if isinstance(selector, (tuple, list)):
            return [tuple(row) for row in result.all()]
        return list(result.scalars().all())

    async def select_all(self, selector: Any, *criteria: Any) -> Result[Sequence[Any], DatabaseError]:
        """
        Project matching rows onto ``selector``.

        A single column/expression yields plain values; a tuple or list of
        them yields tuples.
        """
        try:
            values = await self._fetch_projection(
                self._projection(selector).where(*criteria), selector
            )
        except SQLAlchemyError as e:
            return self._database_failure("select_all", e)
        return success(values)

    async def select_first(self, selector: Any, *criteria: Any) -> Result[Any, NotFoundError | DatabaseError]:
        try:
            values = await self._fetch_projection(
                self._projection(selector).where(*criteria).limit(1), selector
            )
        except SQLAlchemyError as e:
            return self._database_failure("select_first", e)

        if not values:
            return failure(NotFoundError(entity_type=self.model_name))
        return success(values[0])

    # ------------------------------------------------------------------
    # Transactions and persistence
    # ------------------------------------------------------------------

    async def execute_in_transaction(
        self,
        operation: Callable[[GenericRepository[T_Model, K]], Awaitable[R]],
        *,
        isolation_level: str | None = None,
    ) -> R:
        """
        Run ``operation(self)`` in a transaction and commit it.

        The attempt is rolled back and retried by ``execution_strategy`` on
        transient errors; other errors are re-raised after the rollback.
        ``isolation_level`` can only be set before the session's transaction
        starts; any earlier query begins it implicitly, so commit or roll back
        first or a ``RuntimeError`` is raised.
        """
        if isolation_level is not None and self.session.in_transaction():
            self.logger.error(
                f"{self.model_name}: cannot set isolation level {isolation_level} "
                "inside an active transaction"
            )
            raise RuntimeError(
                f"Isolation level {isolation_level} requested while a transaction is "
                "already active; commit or roll back the session first"
            )

        async def attempt() -> R:
            if isolation_level is not None:
                await self.session.connection(
                    execution_options={"isolation_level": isolation_level}
                )
            try:
                outcome = await operation(self)
                await self.session.commit()
                return outcome
            except Exception:
                await self.session.rollback()
                raise

        return await self.execution_strategy.execute(attempt)

    async def save(self, timeout: float | None = None) -> int:
        """Commit pending changes; returns the number of entities written."""
        try:
            written = await commit_and_count(self.session, timeout)
        except Exception as e:
            self.logger.error(f"Error saving {self.model_name} changes: {e}", exc_info=True)
            await self.session.rollback()
            raise
        self.logger.debug(f"{self.model_name}: saved {written} change(s)")
        return written


__all__ = ["GenericRepository", "K", "T_Model"]
