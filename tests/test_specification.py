"""Tests for Specification and SpecificationEvaluator."""

import pytest
from sqlalchemy import inspect as sa_inspect
from sqlalchemy import select
from sqlalchemy.dialects import sqlite
from sqlalchemy.orm import joinedload

from base_repository.core.repository.base import GenericRepository
from base_repository.core.repository.specification import Specification, SpecificationEvaluator
from tests.models import Customer, Order


def _sql(stmt) -> str:
    return str(stmt.compile(dialect=sqlite.dialect(), compile_kwargs={"literal_binds": True}))


def test_specification_is_immutable_builder():
    base = Specification()
    spec = base.where(Customer.city == "Paris").order_ascending(Customer.name).paginate(10, 5)

    assert base.criteria == ()
    assert base.is_paginated is False
    assert len(spec.criteria) == 1
    assert (spec.skip, spec.take, spec.is_paginated) == (10, 5, True)
    with pytest.raises(Exception):
        spec.skip = 3  # type: ignore[misc]


def test_empty_specification_leaves_query_untouched():
    query = select(Customer)

    assert _sql(SpecificationEvaluator.get_query(query, Specification())) == _sql(query)


def test_criteria_are_combined():
    spec = Specification.for_criteria(Customer.city == "Paris", Customer.rating > 3)

    sql = _sql(SpecificationEvaluator.get_query(select(Customer), spec))

    assert "WHERE customers.city = 'Paris' AND customers.rating > 3" in sql


def test_ascending_sort_wins_over_descending():
    spec = Specification().order_descending(Customer.rating).order_ascending(Customer.name)

    sql = _sql(SpecificationEvaluator.get_query(select(Customer), spec))

    assert "ORDER BY customers.name ASC" in sql
    assert "DESC" not in sql


def test_descending_sort_applies_alone():
    spec = Specification().order_descending(Customer.rating)

    sql = _sql(SpecificationEvaluator.get_query(select(Customer), spec))

    assert "ORDER BY customers.rating DESC" in sql


def test_paging_only_applies_when_paginated():
    unpaged = Specification(skip=20, take=10)
    paged = Specification().paginate(skip=20, take=10)

    unpaged_sql = _sql(SpecificationEvaluator.get_query(select(Customer), unpaged))
    paged_sql = _sql(SpecificationEvaluator.get_query(select(Customer), paged))

    assert "LIMIT" not in unpaged_sql
    assert "OFFSET" not in unpaged_sql
    assert "LIMIT 10 OFFSET 20" in paged_sql


def test_count_query_ignores_sort_and_paging():
    spec = (
        Specification.for_criteria(Customer.city == "Paris")
        .order_ascending(Customer.name)
        .paginate(0, 5)
    )

    sql = _sql(SpecificationEvaluator.get_count_query(select(Customer), spec))

    assert sql.startswith("SELECT count(*)")
    assert "customers.city = 'Paris'" in sql
    assert "LIMIT" not in sql
    assert "ORDER BY" not in sql


async def _seed(session):
    customers = [
        Customer(name=name, city=city, rating=rating)
        for name, city, rating in [
            ("alice", "Paris", 5),
            ("bob", "Paris", 3),
            ("carol", "Rome", 4),
            ("dave", "Paris", 1),
        ]
    ]
    session.add_all(customers)
    await session.flush()
    session.add_all([Order(customer_id=customers[0].id, total_cents=100 * i) for i in range(1, 4)])
    await session.commit()
    session.expunge_all()


@pytest.mark.asyncio
async def test_find_with_specification_filters_sorts_and_pages(session):
    await _seed(session)
    repo = GenericRepository(Customer, session)
    spec = (
        Specification.for_criteria(Customer.city == "Paris")
        .order_descending(Customer.rating)
        .paginate(skip=1, take=2)
    )

    customers = (await repo.find_with_specification(spec)).unwrap()

    assert [c.name for c in customers] == ["bob", "dave"]
    assert (await repo.count_with_specification(spec)).unwrap() == 3


@pytest.mark.asyncio
async def test_includes_are_eager_loaded(session):
    await _seed(session)
    repo = GenericRepository(Customer, session)
    spec = Specification.for_criteria(Customer.name == "alice").include(Customer.orders)

    alice = (await repo.get_with_specification(spec)).unwrap()

    assert "orders" not in sa_inspect(alice).unloaded
    assert sorted(o.total_cents for o in alice.orders) == [100, 200, 300]


@pytest.mark.asyncio
async def test_loader_options_pass_through(session):
    await _seed(session)
    repo = GenericRepository(Order, session)
    spec = Specification().include(joinedload(Order.customer)).order_ascending(Order.total_cents)

    orders = (await repo.find_with_specification(spec, tracking=False)).unwrap()

    assert [o.customer.name for o in orders] == ["alice", "alice", "alice"]


@pytest.mark.asyncio
async def test_get_with_specification_not_found(session):
    await _seed(session)
    repo = GenericRepository(Customer, session)

    result = await repo.get_with_specification(Specification.for_criteria(Customer.city == "Oslo"))

    assert result.is_failure()
