"""Declarative base and entity capabilities understood by the repository."""

from __future__ import annotations

from sqlalchemy import Boolean
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SoftDeleteMixin:
    """Marks a mapped class as soft-deletable.

    ``GenericRepository.soft_delete`` only flips the flag of models that
    inherit this mixin; every other model is rejected.
    """

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


def is_soft_deletable(model: type) -> bool:
    return isinstance(model, type) and issubclass(model, SoftDeleteMixin)


__all__ = ["Base", "SoftDeleteMixin", "is_soft_deletable"]
