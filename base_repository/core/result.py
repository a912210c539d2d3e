"""
Result type returned by repository operations.

Every data operation of the generic repository returns either ``Success`` or
``Failure`` instead of raising, so callers can tell an empty answer from a
failed query:

    result = await repo.get(entity_id)
    match result:
        case Success(entity):
            ...
        case Failure(NotFoundError()):
            ...
        case Failure(error):
            logger.error("lookup failed: %s", error)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar, Union, cast

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")


class ResultUnwrapError(RuntimeError):
    """Raised when ``unwrap()`` is called on a ``Failure``."""

    def __init__(self, error: object):
        super().__init__(f"Operation failed: {error}")
        self.error = error


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    """Represents a successful operation result."""

    value: T

    def is_success(self) -> bool:
        return True

    def is_failure(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, _default: T) -> T:
        return self.value

    def map(self, func: Callable[[T], U]) -> Result[U, E]:
        """Transform the success value."""
        return Success(func(self.value))

    def __repr__(self) -> str:
        return f"Success({self.value!r})"


@dataclass(frozen=True, slots=True)
class Failure(Generic[E]):
    """Represents a failed operation result."""

    error: E

    def is_success(self) -> bool:
        return False

    def is_failure(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise ``ResultUnwrapError`` carrying the error."""
        raise ResultUnwrapError(self.error)

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, _func: Callable[[T], U]) -> Result[U, E]:
        return cast(Result[U, E], self)

    def __repr__(self) -> str:
        return f"Failure({self.error!r})"


Result = Union[Success[T], Failure[E]]


def success(value: T) -> Success[T]:
    """Create a Success result."""
    return Success(value)


def failure(error: E) -> Failure[E]:
    """Create a Failure result."""
    return Failure(error)


@dataclass(frozen=True, slots=True)
class NotFoundError:
    """No row matched the lookup."""

    entity_type: str
    entity_id: object | None = None
    message: str | None = None

    def __str__(self) -> str:
        if self.message:
            return self.message
        if self.entity_id is None:
            return f"No matching {self.entity_type} found"
        return f"{self.entity_type} with id={self.entity_id} not found"


@dataclass(frozen=True, slots=True)
class ValidationError:
    """The input cannot be handled by the repository (null entity, missing capability)."""

    field: str
    message: str
    value: str | None = None

    def __str__(self) -> str:
        if self.value:
            return f"{self.field}: {self.message} (got: {self.value})"
        return f"{self.field}: {self.message}"


@dataclass(frozen=True, slots=True)
class DatabaseError:
    """The underlying engine raised while executing the operation."""

    operation: str
    message: str
    original_exception: Exception | None = None

    def __str__(self) -> str:
        return f"Database error during {self.operation}: {self.message}"


@dataclass(frozen=True, slots=True)
class ConflictError:
    """A constraint was violated (duplicate key, foreign key, ...)."""

    entity_type: str
    message: str
    original_exception: Exception | None = None

    def __str__(self) -> str:
        return f"{self.entity_type} conflict: {self.message}"


RepositoryError = Union[NotFoundError, ValidationError, DatabaseError, ConflictError]


__all__ = [
    "ConflictError",
    "DatabaseError",
    "Failure",
    "NotFoundError",
    "RepositoryError",
    "Result",
    "ResultUnwrapError",
    "Success",
    "ValidationError",
    "failure",
    "success",
]
