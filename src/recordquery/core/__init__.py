"""Configuration, logging, database lifecycle and the store adapter."""

from .config import Settings, get_settings
from .database import DatabaseManager, dispose_database, get_database_manager, init_database
from .logging import setup_logging
from .store import Store

__all__ = [
    "DatabaseManager",
    "Settings",
    "Store",
    "dispose_database",
    "get_database_manager",
    "get_settings",
    "init_database",
    "setup_logging",
]
