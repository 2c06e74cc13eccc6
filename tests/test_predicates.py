"""Predicate builder: AND/OR composition, empty criteria, unknown attributes, sort terms."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from recordquery.errors import QueryError
from recordquery.predicates import (
    Combinator,
    attribute_predicate,
    build_predicate,
    sort_clauses,
)
from recordquery.requests import SortTerm
from sample_models import Task

ROWS = [
    {"title": "a", "category": "A", "status": "open", "priority": 1},
    {"title": "b", "category": "A", "status": "done", "priority": 2},
    {"title": "c", "category": "B", "status": "open", "priority": 2},
    {"title": "d", "category": "B", "status": "done", "priority": 3},
    {"title": "e", "category": None, "status": "open", "priority": 3},
]

CRITERIA = [
    {"category": "A"},
    {"category": "A", "status": "open"},
    {"category": "B", "priority": 3},
    {"status": "done", "priority": 1},
    {"category": None},
]


async def _seed(session) -> None:
    session.add_all([Task(**row) for row in ROWS])
    await session.flush()


async def _titles(session, predicate) -> set[str]:
    result = await session.execute(select(Task.title).where(predicate))
    return set(result.scalars().all())


@pytest.mark.asyncio
@pytest.mark.parametrize("criteria", CRITERIA)
async def test_and_predicate_is_conjunction_of_equalities(session, criteria) -> None:
    """AND matches exactly the rows where every attribute equals its value."""
    await _seed(session)
    expected = {r["title"] for r in ROWS if all(r[k] == v for k, v in criteria.items())}
    assert await _titles(session, build_predicate(Task, criteria)) == expected


@pytest.mark.asyncio
@pytest.mark.parametrize("criteria", CRITERIA)
async def test_or_predicate_is_disjunction_of_equalities(session, criteria) -> None:
    """OR matches the rows where any attribute equals its value."""
    await _seed(session)
    expected = {r["title"] for r in ROWS if any(r[k] == v for k, v in criteria.items())}
    predicate = build_predicate(Task, criteria, Combinator.OR)
    assert await _titles(session, predicate) == expected


@pytest.mark.asyncio
async def test_empty_criteria_and_matches_everything(session) -> None:
    await _seed(session)
    assert await _titles(session, build_predicate(Task, {})) == {r["title"] for r in ROWS}


@pytest.mark.asyncio
async def test_empty_criteria_or_matches_nothing(session) -> None:
    await _seed(session)
    assert await _titles(session, build_predicate(Task, {}, Combinator.OR)) == set()


def test_combinator_accepts_value_string() -> None:
    predicate = build_predicate(Task, {"category": "A", "status": "open"}, "OR")  # type: ignore[arg-type]
    assert " OR " in str(predicate)


def test_none_value_compiles_to_is_null() -> None:
    assert "IS NULL" in str(attribute_predicate(Task, "category", None))


def test_unknown_attribute_raises_query_error() -> None:
    with pytest.raises(QueryError) as exc_info:
        build_predicate(Task, {"nope": 1})
    assert "nope" in str(exc_info.value)


def test_unmapped_model_raises_query_error() -> None:
    class Plain:
        pass

    with pytest.raises(QueryError):
        attribute_predicate(Plain, "x", 1)


def test_sort_clauses_keep_order_and_direction() -> None:
    clauses = sort_clauses(Task, [SortTerm("priority", ascending=False), SortTerm("title")])
    rendered = [str(c) for c in clauses]
    assert rendered == ["tasks.priority DESC", "tasks.title ASC"]


def test_sort_clauses_unknown_attribute() -> None:
    with pytest.raises(QueryError):
        sort_clauses(Task, [SortTerm("missing")])


def test_sort_clauses_empty() -> None:
    assert sort_clauses(Task, None) == []
