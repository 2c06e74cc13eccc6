"""
Store: the persistence collaborator behind every repository.

Resolves entity names against the declarative registry and executes fetch,
count and batch-update requests through an AsyncSession. SQLAlchemy failures
are re-raised as QueryError with the original exception chained.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Type

from sqlalchemy import func, inspect, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapper, Session, registry as Registry
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement

from ..errors import QueryError, SchemaResolutionError, UnknownAttributeError
from ..models.base import Base, entity_name
from ..predicates import column_attribute, sort_clauses
from ..requests import BatchRequest, BatchResult, FetchRequest, ResultShape
from .database import DatabaseManager, get_database_manager

logger = logging.getLogger(__name__)


def _exact_entity_clause(model: Type[Any]) -> Optional[ColumnElement[bool]]:
    """Discriminator check restricting a polymorphic entity to its own rows."""
    mapper = inspect(model)
    if mapper.polymorphic_on is None or mapper.polymorphic_identity is None:
        return None
    return mapper.polymorphic_on == mapper.polymorphic_identity


def _primary_key_attributes(model: Type[Any]) -> List[Any]:
    mapper = inspect(model)
    return [getattr(model, mapper.get_property_by_column(col).key) for col in mapper.primary_key]


class Store:
    """SQLAlchemy-backed store used by EntityRepository."""

    def __init__(
        self,
        manager: Optional[DatabaseManager] = None,
        registry: Optional[Registry] = None,
    ) -> None:
        self._manager = manager
        self._registry = registry if registry is not None else Base.registry

    @property
    def manager(self) -> DatabaseManager:
        """The bound DatabaseManager, or the process-wide one."""
        return self._manager if self._manager is not None else get_database_manager()

    @property
    def default_context(self) -> AsyncSession:
        return self.manager.default_session

    # --- Schema ---

    def resolve_entity_description(self, name: str) -> Optional[Mapper[Any]]:
        """Return the mapper registered under entity name, or None."""
        matches = [m for m in self._registry.mappers if entity_name(m.class_) == name]
        if len(matches) > 1:
            classes = sorted(f"{m.class_.__module__}.{m.class_.__qualname__}" for m in matches)
            raise SchemaResolutionError(name, f"ambiguous between {', '.join(classes)}")
        return matches[0] if matches else None

    def insert_new(self, mapper: Mapper[Any], session: AsyncSession) -> Any:
        """Insert a new instance of mapper's class with scalar column defaults applied."""
        obj = mapper.class_()
        for prop in mapper.column_attrs:
            column = prop.columns[0]
            default = getattr(column, "default", None)
            if default is not None and default.is_scalar and getattr(obj, prop.key) is None:
                setattr(obj, prop.key, default.arg)
        session.add(obj)
        return obj

    def set_values_for_keys(self, obj: Any, values: Mapping[str, Any]) -> None:
        """Key-based setter; every key must be a mapped attribute of obj."""
        mapper = inspect(obj).mapper
        for key in values:
            if key not in mapper.attrs:
                raise UnknownAttributeError(entity_name(mapper.class_), key)
        for key, value in values.items():
            setattr(obj, key, value)

    # --- Fetch / count ---

    def build_select(self, request: FetchRequest) -> Select[Any]:
        """Translate a FetchRequest into a SELECT statement (no I/O)."""
        model = request.model
        if request.returns_dictionaries:
            stmt = select(*[column_attribute(model, name) for name in request.properties_to_fetch or ()])
        else:
            stmt = select(model)
        if request.predicate is not None:
            stmt = stmt.where(request.predicate)
        if not request.include_subentities:
            exact = _exact_entity_clause(model)
            if exact is not None:
                stmt = stmt.where(exact)
        order = sort_clauses(model, request.sort)
        if order:
            stmt = stmt.order_by(*order)
        if request.distinct:
            stmt = stmt.distinct()
        if request.limit is not None:
            stmt = stmt.limit(request.limit)
        return stmt

    async def execute_fetch(self, request: FetchRequest, session: AsyncSession) -> List[Any]:
        """Run request; entities, or dictionaries when properties_to_fetch is set."""
        stmt = self.build_select(request)
        try:
            await session.flush()
            result = await session.execute(stmt)
            if request.returns_dictionaries:
                return [dict(row) for row in result.mappings().all()]
            return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise QueryError(f"Fetch of {request.entity_name!r} failed: {exc}") from exc

    async def execute_count(self, request: FetchRequest, session: AsyncSession) -> int:
        """Count rows matching request, ignoring its sort terms."""
        inner = self.build_select(request).order_by(None)
        stmt = select(func.count()).select_from(inner.subquery())
        try:
            await session.flush()
            result = await session.execute(stmt)
            return int(result.scalar_one())
        except SQLAlchemyError as exc:
            raise QueryError(f"Count of {request.entity_name!r} failed: {exc}") from exc

    # --- Mutation ---

    async def delete_record(self, obj: Any, session: AsyncSession) -> None:
        """Mark obj for deletion; pending objects are expunged, removed ones ignored."""
        state = inspect(obj)
        if state.pending:
            session.expunge(obj)
            return
        if state.deleted or state.was_deleted or obj in session.deleted:
            return
        try:
            await session.delete(obj)
        except SQLAlchemyError as exc:
            raise QueryError(f"Delete of {entity_name(type(obj))!r} failed: {exc}") from exc

    async def execute_batch_update(self, request: BatchRequest, session: AsyncSession) -> BatchResult:
        """
        Run one UPDATE directly against the database.

        Instances already loaded in the session are not synchronized; refresh
        them afterwards. Pending inserts are flushed so the UPDATE can match
        them, while unsaved edits to persistent instances stay pending. The
        flush, UPDATE and result capture run in a single synchronous block on
        the session.
        """
        model = request.model
        if not request.properties:
            raise QueryError(f"Batch update of {request.entity_name!r} has no properties to update")
        values = {column_attribute(model, key): value for key, value in request.properties.items()}
        stmt = update(model).values(values).execution_options(synchronize_session=False)
        if request.predicate is not None:
            stmt = stmt.where(request.predicate)
        shape = request.result_shape

        def _execute(sync_session: Session) -> BatchResult:
            pending = list(sync_session.new)
            if pending:
                sync_session.flush(objects=pending)
            with sync_session.no_autoflush:
                return _run(sync_session)

        def _run(sync_session: Session) -> BatchResult:
            if shape is ResultShape.UPDATED_IDENTIFIERS:
                pk = _primary_key_attributes(model)
                dialect = sync_session.get_bind().dialect
                if getattr(dialect, "update_returning", False):
                    rows = sync_session.execute(stmt.returning(*pk)).all()
                else:
                    lookup = select(*pk)
                    if request.predicate is not None:
                        lookup = lookup.where(request.predicate)
                    rows = sync_session.execute(lookup).all()
                    sync_session.execute(stmt)
                return BatchResult(shape, [tuple(row) for row in rows])
            result = sync_session.execute(stmt)
            if shape is ResultShape.UPDATED_COUNT:
                return BatchResult(shape, result.rowcount)
            return BatchResult(shape, True)

        try:
            return await session.run_sync(_execute)
        except SQLAlchemyError as exc:
            raise QueryError(f"Batch update of {request.entity_name!r} failed: {exc}") from exc

    # --- Refresh ---

    async def refresh_object(self, obj: Any, session: AsyncSession, merge_changes: bool = True) -> bool:
        """
        Reload obj's column values from the database.

        With merge_changes, attributes holding unflushed local changes keep
        them; otherwise every attribute is overwritten. Returns False when obj
        has no persisted identity yet.
        """
        state = inspect(obj)
        if state.identity is None:
            return False
        names: Optional[List[str]] = None
        if merge_changes:
            modified = {attr.key for attr in state.attrs if attr.history.has_changes()}
            names = [key for key in state.mapper.column_attrs.keys() if key not in modified]
            if not names:
                return True

        # Autoflush would write the kept local changes before reloading.
        def _refresh(sync_session: Session) -> None:
            with sync_session.no_autoflush:
                sync_session.refresh(obj, attribute_names=names)

        try:
            await session.run_sync(_refresh)
        except SQLAlchemyError as exc:
            raise QueryError(f"Refresh of {entity_name(type(obj))!r} failed: {exc}") from exc
        return True

    async def refresh_records(
        self,
        model: Type[Any],
        identifiers: Iterable[Sequence[Any]],
        session: AsyncSession,
        merge_changes: bool = True,
    ) -> int:
        """Refresh every identified record currently held by session; returns how many were."""
        mapper = inspect(model)
        refreshed = 0
        for ident in identifiers:
            key = mapper.identity_key_from_primary_key(list(ident))
            obj = session.identity_map.get(key)
            if obj is None:
                continue
            if await self.refresh_object(obj, session, merge_changes):
                refreshed += 1
        logger.debug("Refreshed %d %s record(s)", refreshed, entity_name(model))
        return refreshed
