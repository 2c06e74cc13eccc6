"""
Predicate builder: attribute criteria -> one composite SQLAlchemy filter.
Equality only; no ranges, inequality or relationship paths.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Mapping, Optional, Sequence, Type

from sqlalchemy import and_, false, inspect, or_, true
from sqlalchemy.orm import InstrumentedAttribute
from sqlalchemy.sql.elements import ColumnElement

from .errors import QueryError
from .models.base import entity_name
from .requests import SortTerm


class Combinator(str, Enum):
    """Logical combinator joining per-attribute equality checks."""

    AND = "AND"
    OR = "OR"


DEFAULT_COMBINATOR = Combinator.AND


def column_attribute(model: Type[Any], attribute: str) -> InstrumentedAttribute[Any]:
    """Return the mapped column attribute of model named attribute, or raise QueryError."""
    mapper = inspect(model, raiseerr=False)
    if mapper is None:
        raise QueryError(f"{model!r} is not a mapped entity")
    if attribute not in mapper.column_attrs:
        raise QueryError(
            f"Unknown attribute {attribute!r} in predicate for {entity_name(model)!r}"
        )
    return getattr(model, attribute)


def attribute_predicate(model: Type[Any], attribute: str, value: Any) -> ColumnElement[bool]:
    """Equality predicate ``attribute == value``; None compares with IS NULL."""
    return column_attribute(model, attribute) == value


def build_predicate(
    model: Type[Any],
    criteria: Mapping[str, Any],
    combinator: Combinator = DEFAULT_COMBINATOR,
) -> ColumnElement[bool]:
    """
    Combine one equality check per criteria entry with combinator.

    Empty criteria is the identity of the combinator: AND matches every row
    (``true()``), OR matches none (``false()``).
    """
    combinator = Combinator(combinator)
    clauses = [attribute_predicate(model, name, value) for name, value in criteria.items()]
    if combinator is Combinator.AND:
        return and_(*clauses) if clauses else true()
    return or_(*clauses) if clauses else false()


def sort_clauses(model: Type[Any], sort: Optional[Sequence[SortTerm]]) -> List[ColumnElement[Any]]:
    """ORDER BY clauses for sort terms, in the given order."""
    clauses: List[ColumnElement[Any]] = []
    for term in sort or ():
        column = column_attribute(model, term.attribute)
        clauses.append(column.asc() if term.ascending else column.desc())
    return clauses
