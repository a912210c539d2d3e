"""Counting of entities written by a session between two commits."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import event
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_WRITTEN_KEY = "base_repository.written_entities"
_ENABLED_KEY = "base_repository.change_counting"


def _identity(obj: object) -> tuple:
    # new objects get state.key only after after_flush returns
    state = sa_inspect(obj)
    return state.key or state.mapper.identity_key_from_instance(obj)


def _after_flush(session: Session, _flush_context) -> None:
    # new/dirty/deleted still hold the pre-flush state here
    written: set = session.info.setdefault(_WRITTEN_KEY, set())
    for obj in session.new:
        written.add(_identity(obj))
    for obj in session.deleted:
        written.add(_identity(obj))
    for obj in session.dirty:
        if session.is_modified(obj):
            written.add(_identity(obj))


def _reset(session: Session) -> None:
    session.info[_WRITTEN_KEY] = set()


def enable_change_counting(session: AsyncSession) -> None:
    """Install the flush listeners once per session."""
    sync_session = session.sync_session
    if sync_session.info.get(_ENABLED_KEY):
        return
    event.listen(sync_session, "after_flush", _after_flush)
    event.listen(sync_session, "after_commit", _reset)
    event.listen(sync_session, "after_rollback", _reset)
    sync_session.info[_ENABLED_KEY] = True
    sync_session.info[_WRITTEN_KEY] = set()


async def commit_and_count(session: AsyncSession, timeout: float | None = None) -> int:
    """Flush and commit, returning how many distinct entities were written since the last commit."""
    enable_change_counting(session)

    async def _commit() -> int:
        await session.flush()
        written = len(session.sync_session.info.get(_WRITTEN_KEY, ()))
        await session.commit()
        return written

    if timeout is None:
        return await _commit()
    return await asyncio.wait_for(_commit(), timeout)


__all__ = ["commit_and_count", "enable_change_counting"]
