from __future__ import annotations

from typing import Type

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for entities queried through recordquery.

    A subclass may set ``__entity_name__`` when its entity name should differ
    from the class name.
    """

    pass


def entity_name(model: Type[object]) -> str:
    """Return the entity name used to resolve model against the store."""
    name = getattr(model, "__entity_name__", None)
    if name:
        return name
    return model.__qualname__.rsplit(".", 1)[-1]
