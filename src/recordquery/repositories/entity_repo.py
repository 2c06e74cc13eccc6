"""
Generic entity repository: query and mutate one entity type by attribute criteria.

Every operation takes an optional ``session``. Each call resolves exactly one
session (argument, then the repository's bound session, then the store's
default session) and runs every read and write of that call against it.
No commits are performed here - commit responsibility is left to the caller.

Find-or-create and auto-increment are a fetch followed by a write with no lock
in between: two sessions racing on the same rows can both create a record or
both compute the same next value.
"""

from __future__ import annotations

import logging
import numbers
from typing import Any, Dict, Generic, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapper
from sqlalchemy.sql.elements import ColumnElement

from ..core.store import Store
from ..errors import QueryError, SchemaResolutionError, TypeMismatchError, UnknownAttributeError
from ..models.base import Base, entity_name
from ..predicates import (
    DEFAULT_COMBINATOR,
    Combinator,
    attribute_predicate,
    build_predicate,
    column_attribute,
)
from ..requests import (
    BatchRequest,
    BatchResult,
    FetchRequest,
    QueryOutcome,
    ResultShape,
    SortTerm,
    sort_terms,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Base)

Predicate = ColumnElement[bool]


class EntityRepository(Generic[T]):
    """Query/mutation helpers for one mapped entity type.

    Operations returning entities accept ``as_type``: each result must be an
    instance of that class (default: the repository's model) or
    TypeMismatchError is raised.
    """

    def __init__(
        self,
        model: Type[T],
        session: Optional[AsyncSession] = None,
        store: Optional[Store] = None,
    ) -> None:
        self.model = model
        self.session = session
        self.store = store if store is not None else Store()

    # --- General ---

    @property
    def entity_name(self) -> str:
        return entity_name(self.model)

    @property
    def entity_description(self) -> Mapper[Any]:
        """Mapper the store resolves for this entity; raises SchemaResolutionError."""
        mapper = self.store.resolve_entity_description(self.entity_name)
        if mapper is None:
            raise SchemaResolutionError(self.entity_name, "not registered with the store")
        return mapper

    def _session(self, session: Optional[AsyncSession]) -> AsyncSession:
        if session is not None:
            return session
        if self.session is not None:
            return self.session
        return self.store.default_context

    def _cast(self, obj: Any, as_type: Optional[Type[Any]]) -> Any:
        expected = as_type if as_type is not None else self.model
        if not isinstance(obj, expected):
            raise TypeMismatchError(expected, obj)
        return obj

    def _cast_new(self, obj: Any, as_type: Optional[Type[Any]], session: AsyncSession) -> Any:
        """_cast for a freshly inserted object; a rejected object leaves the session."""
        try:
            return self._cast(obj, as_type)
        except TypeMismatchError:
            session.expunge(obj)
            raise

    def create_fetch_request(
        self,
        predicate: Optional[Predicate] = None,
        sort: Optional[Sequence[SortTerm]] = None,
        limit: Optional[int] = None,
    ) -> FetchRequest:
        """Assemble a fetch request for this entity (no I/O)."""
        return FetchRequest(
            entity_name=self.entity_name,
            model=self.model,
            predicate=predicate,
            sort=sort_terms(sort),
            limit=limit,
        )

    def build_predicate(
        self, attributes: Mapping[str, Any], combinator: Combinator = DEFAULT_COMBINATOR
    ) -> Predicate:
        """Equality predicate per attribute, joined with combinator."""
        return build_predicate(self.model, attributes, combinator)

    # --- Create ---

    def _create(self, session: AsyncSession) -> Any:
        obj = self.store.insert_new(self.entity_description, session)
        logger.debug("Inserted new %s", self.entity_name)
        return obj

    def _create_with_attributes(self, attributes: Mapping[str, Any], session: AsyncSession) -> Any:
        obj = self._create(session)
        if attributes:
            try:
                self.store.set_values_for_keys(obj, attributes)
            except UnknownAttributeError:
                session.expunge(obj)
                raise
        return obj

    def create(
        self, session: Optional[AsyncSession] = None, as_type: Optional[Type[Any]] = None
    ) -> T:
        """Insert a new instance (column defaults applied) into the session."""
        session = self._session(session)
        obj = self._create(session)
        return self._cast_new(obj, as_type, session)

    def create_with_attributes(
        self,
        attributes: Mapping[str, Any],
        session: Optional[AsyncSession] = None,
        as_type: Optional[Type[Any]] = None,
    ) -> T:
        """Insert a new instance and set attributes on it by key."""
        session = self._session(session)
        obj = self._create_with_attributes(attributes, session)
        return self._cast_new(obj, as_type, session)

    # --- Find first or create ---

    async def first_or_create_with_attribute(
        self,
        attribute: str,
        value: Any,
        session: Optional[AsyncSession] = None,
        as_type: Optional[Type[Any]] = None,
    ) -> T:
        """Return the first record where attribute == value, creating it if missing."""
        return await self.first_or_create({attribute: value}, session=session, as_type=as_type)

    async def first_or_create(
        self,
        attributes: Mapping[str, Any],
        combinator: Combinator = DEFAULT_COMBINATOR,
        session: Optional[AsyncSession] = None,
        as_type: Optional[Type[Any]] = None,
    ) -> T:
        """
        Return the first record matching attributes, or a new one populated with them.

        Not atomic: the lookup and the insert are separate round trips.
        """
        session = self._session(session)
        request = self.create_fetch_request(self.build_predicate(attributes, combinator), limit=1)
        objects = await self.store.execute_fetch(request, session)
        if objects:
            return self._cast(objects[0], as_type)
        obj = self._create_with_attributes(attributes, session)
        return self._cast_new(obj, as_type, session)

    # --- Find first ---

    async def _first(
        self,
        predicate: Optional[Predicate],
        sort: Optional[Sequence[SortTerm]],
        session: Optional[AsyncSession],
        as_type: Optional[Type[Any]],
    ) -> Optional[T]:
        request = self.create_fetch_request(predicate, sort, limit=1)
        objects = await self.store.execute_fetch(request, self._session(session))
        if not objects:
            return None
        return self._cast(objects[0], as_type)

    async def first(
        self,
        sort: Optional[Sequence[SortTerm]] = None,
        session: Optional[AsyncSession] = None,
        as_type: Optional[Type[Any]] = None,
    ) -> Optional[T]:
        """First record under sort (store order when none), or None."""
        return await self._first(None, sort, session, as_type)

    async def first_matching(
        self,
        predicate: Predicate,
        sort: Optional[Sequence[SortTerm]] = None,
        session: Optional[AsyncSession] = None,
        as_type: Optional[Type[Any]] = None,
    ) -> Optional[T]:
        return await self._first(predicate, sort, session, as_type)

    async def first_with_attribute(
        self,
        attribute: str,
        value: Any,
        sort: Optional[Sequence[SortTerm]] = None,
        session: Optional[AsyncSession] = None,
        as_type: Optional[Type[Any]] = None,
    ) -> Optional[T]:
        predicate = attribute_predicate(self.model, attribute, value)
        return await self._first(predicate, sort, session, as_type)

    async def first_with_attributes(
        self,
        attributes: Mapping[str, Any],
        combinator: Combinator = DEFAULT_COMBINATOR,
        sort: Optional[Sequence[SortTerm]] = None,
        session: Optional[AsyncSession] = None,
        as_type: Optional[Type[Any]] = None,
    ) -> Optional[T]:
        predicate = self.build_predicate(attributes, combinator)
        return await self._first(predicate, sort, session, as_type)

    async def first_ordered_by(
        self,
        attribute: str,
        ascending: bool = True,
        session: Optional[AsyncSession] = None,
        as_type: Optional[Type[Any]] = None,
    ) -> Optional[T]:
        """First record ordered by a single attribute."""
        return await self._first(None, [SortTerm(attribute, ascending)], session, as_type)

    # --- Find all ---

    async def _all(
        self,
        predicate: Optional[Predicate],
        sort: Optional[Sequence[SortTerm]],
        session: AsyncSession,
        as_type: Optional[Type[Any]],
    ) -> List[T]:
        request = self.create_fetch_request(predicate, sort)
        objects = await self.store.execute_fetch(request, session)
        return [self._cast(obj, as_type) for obj in objects]

    async def all(
        self,
        sort: Optional[Sequence[SortTerm]] = None,
        session: Optional[AsyncSession] = None,
        as_type: Optional[Type[Any]] = None,
    ) -> List[T]:
        """Every record; an empty list when there are none."""
        return await self._all(None, sort, self._session(session), as_type)

    async def all_matching(
        self,
        predicate: Predicate,
        sort: Optional[Sequence[SortTerm]] = None,
        session: Optional[AsyncSession] = None,
        as_type: Optional[Type[Any]] = None,
    ) -> List[T]:
        return await self._all(predicate, sort, self._session(session), as_type)

    async def all_with_attribute(
        self,
        attribute: str,
        value: Any,
        sort: Optional[Sequence[SortTerm]] = None,
        session: Optional[AsyncSession] = None,
        as_type: Optional[Type[Any]] = None,
    ) -> List[T]:
        predicate = attribute_predicate(self.model, attribute, value)
        return await self._all(predicate, sort, self._session(session), as_type)

    async def all_with_attributes(
        self,
        attributes: Mapping[str, Any],
        combinator: Combinator = DEFAULT_COMBINATOR,
        sort: Optional[Sequence[SortTerm]] = None,
        session: Optional[AsyncSession] = None,
        as_type: Optional[Type[Any]] = None,
    ) -> List[T]:
        predicate = self.build_predicate(attributes, combinator)
        return await self._all(predicate, sort, self._session(session), as_type)

    # --- Delete ---

    async def delete(self, entity: T, session: Optional[AsyncSession] = None) -> None:
        """Mark entity for deletion in the session (not committed)."""
        await self.store.delete_record(entity, self._session(session))

    async def _delete_fetched(self, predicate: Optional[Predicate], session: Optional[AsyncSession]) -> int:
        session = self._session(session)
        objects = await self.store.execute_fetch(self.create_fetch_request(predicate), session)
        for obj in objects:
            await self.store.delete_record(obj, session)
        if objects:
            logger.debug("Marked %d %s record(s) for deletion", len(objects), self.entity_name)
        return len(objects)

    async def delete_all(self, session: Optional[AsyncSession] = None) -> int:
        """Delete every record; returns how many were marked."""
        return await self._delete_fetched(None, session)

    async def delete_all_matching(self, predicate: Predicate, session: Optional[AsyncSession] = None) -> int:
        return await self._delete_fetched(predicate, session)

    async def delete_all_with_attribute(
        self, attribute: str, value: Any, session: Optional[AsyncSession] = None
    ) -> int:
        return await self._delete_fetched(attribute_predicate(self.model, attribute, value), session)

    async def delete_all_with_attributes(
        self,
        attributes: Mapping[str, Any],
        combinator: Combinator = DEFAULT_COMBINATOR,
        session: Optional[AsyncSession] = None,
    ) -> int:
        return await self._delete_fetched(self.build_predicate(attributes, combinator), session)

    # --- Count ---

    async def try_count(
        self,
        predicate: Optional[Predicate] = None,
        include_subentities: bool = False,
        session: Optional[AsyncSession] = None,
    ) -> QueryOutcome[int]:
        """
        Count matching records, keeping any failure on the outcome.

        Rows of mapped subclasses are excluded unless include_subentities is set.
        A failed count reports 0 with the error attached.
        """
        request = self.create_fetch_request(predicate)
        request.include_subentities = include_subentities
        try:
            value = await self.store.execute_count(request, self._session(session))
        except QueryError as exc:
            logger.warning("Count of %s failed, reporting 0: %s", self.entity_name, exc)
            return QueryOutcome(0, exc)
        return QueryOutcome(value)

    async def count(self, session: Optional[AsyncSession] = None) -> int:
        return await self.count_matching(None, session=session)

    async def count_matching(
        self, predicate: Optional[Predicate] = None, session: Optional[AsyncSession] = None
    ) -> int:
        """Count of matching records; 0 when the count fails (see try_count)."""
        outcome = await self.try_count(predicate, session=session)
        return outcome.value

    async def count_with_attribute(
        self, attribute: str, value: Any, session: Optional[AsyncSession] = None
    ) -> int:
        return await self.count_with_attributes({attribute: value}, session=session)

    async def count_with_attributes(
        self,
        attributes: Mapping[str, Any],
        combinator: Combinator = DEFAULT_COMBINATOR,
        session: Optional[AsyncSession] = None,
    ) -> int:
        return await self.count_matching(self.build_predicate(attributes, combinator), session=session)

    # --- Distinct ---

    async def distinct_records(
        self,
        attributes: Sequence[str],
        predicate: Optional[Predicate] = None,
        sort: Optional[Sequence[SortTerm]] = None,
        session: Optional[AsyncSession] = None,
    ) -> List[Dict[str, Any]]:
        """Distinct rows of the given attributes as dictionaries; raises QueryError."""
        if not attributes:
            raise QueryError(f"Distinct fetch of {self.entity_name!r} needs at least one attribute")
        request = self.create_fetch_request(predicate, sort)
        request.properties_to_fetch = list(attributes)
        request.distinct = True
        return await self.store.execute_fetch(request, self._session(session))

    async def distinct_values(
        self,
        attribute: str,
        predicate: Optional[Predicate] = None,
        sort: Optional[Sequence[SortTerm]] = None,
        session: Optional[AsyncSession] = None,
    ) -> List[Any]:
        """Distinct non-null values of one attribute; raises QueryError."""
        records = await self.distinct_records([attribute], predicate, sort, session)
        return [record[attribute] for record in records if record.get(attribute) is not None]

    async def try_distinct_records(
        self,
        attributes: Sequence[str],
        predicate: Optional[Predicate] = None,
        sort: Optional[Sequence[SortTerm]] = None,
        session: Optional[AsyncSession] = None,
    ) -> QueryOutcome[List[Dict[str, Any]]]:
        try:
            records = await self.distinct_records(attributes, predicate, sort, session)
        except QueryError as exc:
            logger.warning("Distinct fetch of %s failed: %s", self.entity_name, exc)
            return QueryOutcome([], exc)
        return QueryOutcome(records)

    async def try_distinct_values(
        self,
        attribute: str,
        predicate: Optional[Predicate] = None,
        sort: Optional[Sequence[SortTerm]] = None,
        session: Optional[AsyncSession] = None,
    ) -> QueryOutcome[List[Any]]:
        try:
            values = await self.distinct_values(attribute, predicate, sort, session)
        except QueryError as exc:
            logger.warning("Distinct fetch of %s.%s failed: %s", self.entity_name, attribute, exc)
            return QueryOutcome([], exc)
        return QueryOutcome(values)

    # --- Other ---

    async def next_auto_incremented_integer(
        self, attribute: str, session: Optional[AsyncSession] = None
    ) -> int:
        """
        Current maximum of attribute plus one.

        NULLs are ignored. 0 when there are no records or the maximum is not a
        whole number. Two sessions calling this concurrently can get the same
        value.
        """
        not_null = column_attribute(self.model, attribute).is_not(None)
        obj = await self.first_matching(
            not_null, [SortTerm(attribute, ascending=False)], session=session
        )
        if obj is None:
            return 0
        current = getattr(obj, attribute)
        if isinstance(current, bool):
            return 0
        if isinstance(current, numbers.Integral):
            return int(current) + 1
        if isinstance(current, numbers.Real) and float(current).is_integer():
            return int(current) + 1
        return 0

    async def refresh(
        self, entity: T, merge_changes: bool = True, session: Optional[AsyncSession] = None
    ) -> bool:
        """Reload entity from the database, keeping unflushed changes when merge_changes."""
        return await self.store.refresh_object(entity, self._session(session), merge_changes)

    # --- Batch update ---

    async def batch_update(
        self,
        predicate: Optional[Predicate] = None,
        properties: Optional[Mapping[str, Any]] = None,
        result_shape: ResultShape = ResultShape.STATUS_ONLY,
        session: Optional[AsyncSession] = None,
    ) -> BatchResult:
        """UPDATE matching rows directly in the database; raises QueryError."""
        request = BatchRequest(
            entity_name=self.entity_name,
            model=self.model,
            predicate=predicate,
            properties=dict(properties or {}),
            result_shape=ResultShape(result_shape),
        )
        return await self.store.execute_batch_update(request, self._session(session))

    async def try_batch_update(
        self,
        predicate: Optional[Predicate] = None,
        properties: Optional[Mapping[str, Any]] = None,
        result_shape: ResultShape = ResultShape.STATUS_ONLY,
        session: Optional[AsyncSession] = None,
    ) -> QueryOutcome[Optional[BatchResult]]:
        """Best-effort batch_update: failures are logged and carried on the outcome."""
        try:
            result = await self.batch_update(predicate, properties, result_shape, session)
        except QueryError as exc:
            logger.warning("Batch update of %s failed: %s", self.entity_name, exc)
            return QueryOutcome(None, exc)
        return QueryOutcome(result)

    async def objects_count_for_batch_update(
        self,
        predicate: Optional[Predicate] = None,
        properties: Optional[Mapping[str, Any]] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        """Number of rows a batch update changed; 0 on failure."""
        outcome = await self.try_batch_update(
            predicate, properties, ResultShape.UPDATED_COUNT, session
        )
        if outcome.value is None or outcome.value.count is None:
            return 0
        return max(outcome.value.count, 0)

    async def batch_update_and_refresh(
        self,
        predicate: Optional[Predicate] = None,
        properties: Optional[Mapping[str, Any]] = None,
        session: Optional[AsyncSession] = None,
    ) -> List[Tuple[Any, ...]]:
        """
        Batch update, then refresh every updated record held by the session.

        Returns the primary keys of the updated rows; raises QueryError.
        """
        session = self._session(session)
        result = await self.batch_update(
            predicate, properties, ResultShape.UPDATED_IDENTIFIERS, session
        )
        identifiers = result.identifiers or []
        await self.store.refresh_records(self.model, identifiers, session, merge_changes=True)
        return identifiers
