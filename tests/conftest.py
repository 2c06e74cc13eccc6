# Ensure src is on sys.path when pytest runs without an installed package
import sys
from pathlib import Path

_src = Path(__file__).resolve().parent.parent / "src"
_str_src = str(_src)
if _str_src not in sys.path:
    sys.path.insert(0, _str_src)

import pytest_asyncio

from recordquery.core.database import DatabaseManager, dispose_database, init_database
from recordquery.models.base import Base

import sample_models  # noqa: F401 - register test entities with Base.metadata


@pytest_asyncio.fixture
async def db():
    """In-memory SQLite with every test table, installed as the process-wide database."""
    manager = await init_database("sqlite+aiosqlite:///:memory:", echo=False)
    await manager.create_all(Base.metadata)
    yield manager
    await dispose_database()


@pytest_asyncio.fixture
async def session(db):
    s = db.new_session()
    try:
        yield s
    finally:
        await s.close()


@pytest_asyncio.fixture
async def file_db(tmp_path):
    """File-backed SQLite so that separate sessions use separate connections."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{(tmp_path / 'records.db').as_posix()}")
    await manager.init()
    await manager.create_all(Base.metadata)
    yield manager
    await manager.dispose()
