"""
Error taxonomy for the query layer.
Every failure raised by a repository or the store derives from RecordQueryError.
"""

from __future__ import annotations

from typing import Optional


class RecordQueryError(Exception):
    """Base class for errors raised by recordquery."""


class SchemaResolutionError(RecordQueryError):
    """Raised when the store cannot resolve an entity name to a mapped schema."""

    def __init__(self, entity_name: str, detail: Optional[str] = None) -> None:
        self.entity_name = entity_name
        self.detail = detail
        message = f"Cannot resolve entity {entity_name!r}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UnknownAttributeError(RecordQueryError, AttributeError):
    """Raised when a key-based setter names an attribute the schema does not have."""

    def __init__(self, entity_name: str, attribute: str) -> None:
        self.entity_name = entity_name
        self.attribute = attribute
        super().__init__(f"{entity_name!r} has no attribute {attribute!r}")


class QueryError(RecordQueryError):
    """Raised for malformed predicates and failed store executions."""


class TypeMismatchError(RecordQueryError, TypeError):
    """Raised when a result is not an instance of the type the caller asked for."""

    def __init__(self, expected: type, actual: object) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Expected {expected.__name__}, got {type(actual).__name__}"
        )
