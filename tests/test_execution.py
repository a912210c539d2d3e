"""Tests for ExecutionStrategy and GenericRepository.execute_in_transaction."""

import logging
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from base_repository.core.execution import ExecutionStrategy, is_transient_error
from base_repository.core.repository.base import GenericRepository
from base_repository.core.settings import Settings, get_settings
from tests.models import Customer


def _locked() -> OperationalError:
    return OperationalError("UPDATE customers", {}, Exception("database is locked"))


class FlakyOperation:
    def __init__(self, failures, error_factory=_locked, result="done"):
        self.failures = failures
        self.error_factory = error_factory
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error_factory()
        return self.result


def test_transient_error_classification():
    assert is_transient_error(_locked())
    assert not is_transient_error(IntegrityError("INSERT", {}, Exception("UNIQUE")))
    assert not is_transient_error(ValueError("bad input"))

    invalidated = DBAPIError("SELECT 1", {}, Exception("gone"), connection_invalidated=True)
    assert is_transient_error(invalidated)


def test_rejects_non_positive_attempts():
    with pytest.raises(ValueError):
        ExecutionStrategy(max_attempts=0)


def test_delay_grows_exponentially_up_to_max():
    strategy = ExecutionStrategy(base_delay=0.1, max_delay=0.5)

    assert strategy.delay_for(1) == pytest.approx(0.1)
    assert strategy.delay_for(2) == pytest.approx(0.2)
    assert strategy.delay_for(3) == pytest.approx(0.4)
    assert strategy.delay_for(4) == pytest.approx(0.5)


def test_from_settings(monkeypatch):
    monkeypatch.setenv("DB_RETRY_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("DB_RETRY_BASE_DELAY", "0.25")
    monkeypatch.setenv("DB_RETRY_MAX_DELAY", "4")
    get_settings.cache_clear()

    strategy = ExecutionStrategy.from_settings()

    assert isinstance(get_settings(), Settings)
    assert strategy.max_attempts == 5
    assert strategy.base_delay == 0.25
    assert strategy.max_delay == 4.0


@pytest.mark.asyncio
async def test_retries_transient_errors_until_success():
    strategy = ExecutionStrategy(max_attempts=3, base_delay=0, max_delay=0)
    operation = FlakyOperation(failures=2)

    with patch("base_repository.core.execution.asyncio.sleep", new=AsyncMock()) as sleep:
        assert await strategy.execute(operation) == "done"

    assert operation.calls == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    strategy = ExecutionStrategy(max_attempts=2, base_delay=0, max_delay=0)
    operation = FlakyOperation(failures=5)

    with pytest.raises(OperationalError):
        await strategy.execute(operation)

    assert operation.calls == 2


@pytest.mark.asyncio
async def test_does_not_retry_other_errors():
    strategy = ExecutionStrategy(max_attempts=3, base_delay=0, max_delay=0)
    operation = FlakyOperation(failures=1, error_factory=lambda: ValueError("bad input"))

    with pytest.raises(ValueError):
        await strategy.execute(operation)

    assert operation.calls == 1


@pytest.mark.asyncio
async def test_logs_each_retry(caplog):
    strategy = ExecutionStrategy(max_attempts=3, base_delay=0, max_delay=0)

    with caplog.at_level(logging.WARNING, logger="base_repository.core.execution"):
        await strategy.execute(FlakyOperation(failures=1))

    assert "attempt 1/3" in caplog.text


def _repository(session, max_attempts=3):
    strategy = ExecutionStrategy(max_attempts=max_attempts, base_delay=0, max_delay=0)
    return GenericRepository(Customer, session, execution_strategy=strategy)


@pytest.mark.asyncio
async def test_execute_in_transaction_commits(session, session_factory):
    repo = _repository(session)

    async def register(repository):
        return (await repository.add(Customer(name="Ada"))).unwrap()

    customer_id = await repo.execute_in_transaction(register)

    async with session_factory() as other:
        assert (await other.execute(select(Customer.name).where(Customer.id == customer_id))).scalar() == "Ada"


@pytest.mark.asyncio
async def test_execute_in_transaction_rolls_back_and_reraises(session):
    repo = _repository(session)
    calls = []

    async def broken(repository):
        calls.append(1)
        await repository.add(Customer(name="ghost"))
        raise ValueError("business rule violated")

    with pytest.raises(ValueError):
        await repo.execute_in_transaction(broken)

    assert calls == [1]
    assert (await repo.count()).unwrap() == 0


@pytest.mark.asyncio
async def test_execute_in_transaction_retries_transient_failure(session):
    repo = _repository(session)
    attempts = []

    async def contended(repository):
        attempts.append(1)
        await repository.add(Customer(name=f"try-{len(attempts)}"))
        if len(attempts) == 1:
            raise _locked()
        return len(attempts)

    assert await repo.execute_in_transaction(contended) == 2

    names = (await repo.select_all(Customer.name)).unwrap()
    assert names == ["try-2"]


@pytest.mark.asyncio
async def test_isolation_level_applied_when_no_transaction(session):
    repo = _repository(session)

    async def noop(repository):
        return "ok"

    with patch.object(session, "connection", new=AsyncMock()) as connection:
        assert await repo.execute_in_transaction(noop, isolation_level="SERIALIZABLE") == "ok"

    connection.assert_awaited_once_with(execution_options={"isolation_level": "SERIALIZABLE"})


@pytest.mark.asyncio
async def test_isolation_level_rejected_inside_active_transaction(session):
    repo = _repository(session)
    await session.execute(select(1))
    calls = []

    async def noop(repository):
        calls.append(1)
        return "ok"

    with patch.object(session, "connection", new=AsyncMock()) as connection:
        with pytest.raises(RuntimeError, match="already active"):
            await repo.execute_in_transaction(noop, isolation_level="SERIALIZABLE")

    connection.assert_not_awaited()
    assert calls == []


@pytest.mark.asyncio
async def test_isolation_level_after_rollback_of_earlier_reads(session):
    repo = _repository(session)
    await repo.count()
    await session.rollback()

    async def noop(repository):
        return "ok"

    with patch.object(session, "connection", new=AsyncMock()) as connection:
        assert await repo.execute_in_transaction(noop, isolation_level="SERIALIZABLE") == "ok"

    connection.assert_awaited_once()
