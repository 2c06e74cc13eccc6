"""recordquery: find, count, create, delete and batch-update SQLAlchemy entities by attribute criteria."""

from .core import (
    DatabaseManager,
    Settings,
    Store,
    dispose_database,
    get_database_manager,
    init_database,
    setup_logging,
)
from .errors import (
    QueryError,
    RecordQueryError,
    SchemaResolutionError,
    TypeMismatchError,
    UnknownAttributeError,
)
from .models import Base, entity_name
from .predicates import Combinator, attribute_predicate, build_predicate
from .repositories import EntityRepository
from .requests import BatchRequest, BatchResult, FetchRequest, QueryOutcome, ResultShape, SortTerm

__version__ = "0.1.0"

__all__ = [
    "Base",
    "BatchRequest",
    "BatchResult",
    "Combinator",
    "DatabaseManager",
    "EntityRepository",
    "FetchRequest",
    "QueryError",
    "QueryOutcome",
    "RecordQueryError",
    "ResultShape",
    "SchemaResolutionError",
    "Settings",
    "SortTerm",
    "Store",
    "TypeMismatchError",
    "UnknownAttributeError",
    "attribute_predicate",
    "build_predicate",
    "dispose_database",
    "entity_name",
    "get_database_manager",
    "init_database",
    "setup_logging",
]
