"""
Retry-aware execution of database work.

``ExecutionStrategy.execute`` re-runs a coroutine factory when it fails with a
transient database error (dropped connection, lock timeout, serialization
failure), backing off exponentially between attempts. Any other error, or the
last failed attempt, propagates to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from base_repository.core.settings import Settings, get_settings

logger = logging.getLogger(__name__)

R = TypeVar("R")


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


class ExecutionStrategy:
    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 2.0,
        is_transient: Callable[[BaseException], bool] = is_transient_error,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.is_transient = is_transient

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ExecutionStrategy:
        settings = settings or get_settings()
        return cls(
            max_attempts=settings.db_retry_max_attempts,
            base_delay=settings.db_retry_base_delay,
            max_delay=settings.db_retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def execute(self, operation: Callable[[], Awaitable[R]]) -> R:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_attempts or not self.is_transient(exc):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Transient database error on attempt %s/%s, retrying in %.2fs: %s",
                    attempt,
                    self.max_attempts,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)


__all__ = ["ExecutionStrategy", "is_transient_error"]
