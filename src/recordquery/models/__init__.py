"""Declarative base and entity naming for models queried through recordquery.

Application models subclass :class:`Base`; recordquery ships no concrete
tables of its own.
"""

from .base import Base, entity_name

__all__ = ["Base", "entity_name"]
