"""Generic async repository, specification and unit of work for SQLAlchemy."""

from base_repository.core.repository import (
    GenericRepository,
    PaginatedResult,
    Specification,
    SpecificationEvaluator,
)
from base_repository.core.result import (
    ConflictError,
    DatabaseError,
    Failure,
    NotFoundError,
    Result,
    Success,
    ValidationError,
)
from base_repository.core.uow import UnitOfWork, create_uow
from base_repository.domain.base import Base, SoftDeleteMixin

__version__ = "1.0.0"

__all__ = [
    "Base",
    "ConflictError",
    "DatabaseError",
    "Failure",
    "GenericRepository",
    "NotFoundError",
    "PaginatedResult",
    "Result",
    "SoftDeleteMixin",
    "Specification",
    "SpecificationEvaluator",
    "Success",
    "UnitOfWork",
    "ValidationError",
    "create_uow",
]
