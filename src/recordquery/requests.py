"""
Request and result types exchanged between repositories and the store.
Requests are built per call and discarded after execution.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy.sql.elements import ColumnElement

from .errors import RecordQueryError

V = TypeVar("V")


@dataclass(frozen=True)
class SortTerm:
    """Single ORDER BY term: attribute name and direction."""

    attribute: str
    ascending: bool = True


class ResultShape(str, Enum):
    """What a batch update reports back."""

    STATUS_ONLY = "STATUS_ONLY"
    UPDATED_COUNT = "UPDATED_COUNT"
    UPDATED_IDENTIFIERS = "UPDATED_IDENTIFIERS"


@dataclass
class FetchRequest:
    """
    Fetch of one entity: optional predicate, sort terms and limit.
    With properties_to_fetch set, the store returns dictionary rows instead of entities.
    """

    entity_name: str
    model: Type[Any]
    predicate: Optional[ColumnElement[bool]] = None
    sort: List[SortTerm] = field(default_factory=list)
    limit: Optional[int] = None
    include_subentities: bool = True
    properties_to_fetch: Optional[List[str]] = None
    distinct: bool = False

    @property
    def returns_dictionaries(self) -> bool:
        return self.properties_to_fetch is not None


@dataclass
class BatchRequest:
    """Direct-to-store UPDATE of every row matching predicate."""

    entity_name: str
    model: Type[Any]
    predicate: Optional[ColumnElement[bool]] = None
    properties: Dict[str, Any] = field(default_factory=dict)
    result_shape: ResultShape = ResultShape.STATUS_ONLY


@dataclass(frozen=True)
class BatchResult:
    """
    Result of a batch update. result is True for STATUS_ONLY, the number of
    updated rows for UPDATED_COUNT and a list of primary-key tuples for
    UPDATED_IDENTIFIERS.
    """

    result_shape: ResultShape
    result: Any

    @property
    def count(self) -> Optional[int]:
        if self.result_shape is ResultShape.UPDATED_COUNT and isinstance(self.result, int):
            return self.result
        return None

    @property
    def identifiers(self) -> Optional[List[Tuple[Any, ...]]]:
        if self.result_shape is ResultShape.UPDATED_IDENTIFIERS and isinstance(self.result, list):
            return self.result
        return None


@dataclass(frozen=True)
class QueryOutcome(Generic[V]):
    """A value together with the error that may have degraded it.

    Degrading operations report a fallback value (0, empty list, None) and
    keep the error here, so callers can tell "nothing" from "failed".
    """

    value: V
    error: Optional[RecordQueryError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> V:
        """Return the value, raising the recorded error if there is one."""
        if self.error is not None:
            raise self.error
        return self.value


def sort_terms(sort: Optional[Sequence[SortTerm]]) -> List[SortTerm]:
    return list(sort) if sort else []
