from .base import Base, SoftDeleteMixin, is_soft_deletable

__all__ = ["Base", "SoftDeleteMixin", "is_soft_deletable"]
