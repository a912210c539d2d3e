"""Offset pagination helpers."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Generic, Sequence, TypeVar

T = TypeVar("T")

DEFAULT_PAGE_INDEX = 1
DEFAULT_PAGE_SIZE = 10


@dataclass(frozen=True)
class PaginatedResult(Generic[T]):
    """
    One page of items plus count metadata.

    ``page_index`` is 1-based. Index and size are expected to be clamped by
    the caller (see ``normalize_page``); they are not re-validated here.
    """

    total_count: int
    page_index: int
    page_size: int
    items: Sequence[T] = field(default_factory=tuple)

    @property
    def pages_count(self) -> int:
        if self.total_count <= 0:
            return 0
        return math.ceil(self.total_count / self.page_size)

    @property
    def has_previous_page(self) -> bool:
        return self.page_index > 1

    @property
    def has_next_page(self) -> bool:
        return self.page_index < self.pages_count


def normalize_page(
    page_index: int,
    page_size: int,
    default_page_size: int = DEFAULT_PAGE_SIZE,
) -> tuple[int, int]:
    """Clamp non-positive index to 1 and non-positive size to the default size."""
    if page_index <= 0:
        page_index = DEFAULT_PAGE_INDEX
    if page_size <= 0:
        page_size = default_page_size
    return page_index, page_size


def page_offset(page_index: int, page_size: int) -> int:
    return (page_index - 1) * page_size


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "PaginatedResult",
    "normalize_page",
    "page_offset",
]
