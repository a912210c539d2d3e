"""Repository pattern implementation."""

from .base import GenericRepository, K, T_Model
from .pagination import PaginatedResult, normalize_page
from .protocols import IRepository, IUnitOfWork
from .specification import Specification, SpecificationEvaluator

__all__ = [
    "GenericRepository",
    "IRepository",
    "IUnitOfWork",
    "K",
    "PaginatedResult",
    "Specification",
    "SpecificationEvaluator",
    "T_Model",
    "normalize_page",
]
