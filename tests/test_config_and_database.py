"""Settings, logging setup and the DatabaseManager lifecycle."""

from __future__ import annotations

import logging

import pytest

from recordquery.core import database as database_module
from recordquery.core.config import DEFAULT_DATABASE_URL, Settings, get_settings
from recordquery.core.database import (
    DatabaseManager,
    dispose_database,
    get_database_manager,
    init_database,
)
from recordquery.core.logging import setup_logging
from recordquery.core.store import Store
from recordquery.repositories import EntityRepository
from sample_models import Task

_ENV_KEYS = ("RECORDQUERY_DATABASE_URL", "DATABASE_URL", "LOG_LEVEL", "DB_ECHO")


@pytest.fixture
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def test_settings_defaults(clean_env) -> None:
    settings = Settings.from_env()
    assert settings.database_url == DEFAULT_DATABASE_URL
    assert settings.log_level == "INFO"
    assert settings.echo is False


def test_settings_prefers_project_database_url(clean_env) -> None:
    clean_env.setenv("DATABASE_URL", "sqlite+aiosqlite:///generic.db")
    assert Settings.from_env().database_url == "sqlite+aiosqlite:///generic.db"
    clean_env.setenv("RECORDQUERY_DATABASE_URL", "sqlite+aiosqlite:///own.db")
    assert Settings.from_env().database_url == "sqlite+aiosqlite:///own.db"


@pytest.mark.parametrize(
    "raw,expected",
    [("true", True), ("1", True), ("ON", True), ("no", False), ("0", False), ("maybe", False)],
)
def test_settings_echo_flag(clean_env, raw, expected) -> None:
    clean_env.setenv("DB_ECHO", raw)
    assert Settings.from_env().echo is expected


def test_get_settings_is_cached(clean_env) -> None:
    clean_env.setenv("LOG_LEVEL", "DEBUG")
    first = get_settings()
    clean_env.setenv("LOG_LEVEL", "ERROR")
    assert get_settings() is first
    assert first.log_level == "DEBUG"


def test_setup_logging_sets_engine_logger_level() -> None:
    engine_logger = logging.getLogger("sqlalchemy.engine")
    previous = engine_logger.level
    try:
        setup_logging(Settings(log_level="debug", echo=True))
        assert engine_logger.level == logging.INFO
        setup_logging(Settings(echo=False))
        assert engine_logger.level == logging.WARNING
    finally:
        engine_logger.setLevel(previous)


@pytest.mark.asyncio
async def test_new_session_requires_init() -> None:
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    with pytest.raises(RuntimeError):
        manager.new_session()
    with pytest.raises(RuntimeError):
        await manager.create_all(Task.metadata)


@pytest.mark.asyncio
async def test_global_manager_lifecycle() -> None:
    assert database_module._db_manager is None
    with pytest.raises(RuntimeError):
        get_database_manager()

    manager = await init_database("sqlite+aiosqlite:///:memory:", echo=False)
    try:
        assert get_database_manager() is manager
        assert await init_database() is manager
        assert manager.engine is not None
    finally:
        await dispose_database()

    with pytest.raises(RuntimeError):
        get_database_manager()
    assert manager.engine is None


@pytest.mark.asyncio
async def test_default_session_is_lazy_and_reset_on_dispose() -> None:
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.init()
    first = manager.default_session
    assert manager.default_session is first

    await manager.dispose()
    await manager.init()
    try:
        assert manager.default_session is not first
    finally:
        await manager.dispose()


@pytest.mark.asyncio
async def test_session_context_commits_on_success(file_db) -> None:
    async with file_db.session() as s:
        EntityRepository(Task, session=s).create_with_attributes({"title": "kept"})

    async with file_db.session() as s:
        assert await EntityRepository(Task, session=s).count_with_attribute("title", "kept") == 1


@pytest.mark.asyncio
async def test_session_context_rolls_back_on_error(file_db) -> None:
    with pytest.raises(ValueError):
        async with file_db.session() as s:
            EntityRepository(Task, session=s).create_with_attributes({"title": "lost"})
            await s.flush()
            raise ValueError("abort")

    async with file_db.session() as s:
        assert await EntityRepository(Task, session=s).count_with_attribute("title", "lost") == 0


@pytest.mark.asyncio
async def test_store_bound_manager_overrides_global(db, file_db) -> None:
    bound = Store(manager=file_db)
    assert bound.manager is file_db
    assert bound.default_context is file_db.default_session
    assert Store().manager is db

    repo = EntityRepository(Task, store=bound)
    repo.create_with_attributes({"title": "on file"})
    assert await repo.count() == 1
    assert await EntityRepository(Task).count() == 0
