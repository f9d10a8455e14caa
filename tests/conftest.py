"""Pytest configuration and shared fixtures.

Class databases are real SQLite files under tmp_path, so every test
gets a fresh, isolated set of tenants.
"""

from pathlib import Path

import pytest
import pytest_asyncio

from gradesync.db.router import TenantDatabaseRouter
from gradesync.db.session import TenantDatabase


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """SQLite URL pointing at a per-test directory of class databases."""
    return f"sqlite+aiosqlite:///{tmp_path / 'classes'}"


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    """Scratch area for the conversion pipeline."""
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest_asyncio.fixture
async def databases(database_url: str):
    """Fresh tenant router; disposes every engine it opened."""
    router = TenantDatabaseRouter(database_url)
    yield router
    await router.dispose()


@pytest_asyncio.fixture
async def class_db(databases: TenantDatabaseRouter) -> TenantDatabase:
    """Resolved database for a sample class."""
    db = await databases.resolve("6e B")
    assert db is not None
    return db
