"""Pytest configuration and fixtures."""

import os
import tempfile
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from app.api import execute
from app.db.database import close_database, init_database
from app.main import app
from app.storage.file_store import FileStore, get_file_store


@pytest.fixture(autouse=True)
async def setup_test_db():
    """Set up a test database for each test."""
    # Create a temporary database file
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    await init_database(db_path)

    yield

    await close_database()
    os.unlink(db_path)


@pytest.fixture(autouse=True)
def reset_running_workflows():
    """Forget executions left over from other tests."""
    execute._running_workflows.clear()
    yield
    execute._running_workflows.clear()


@pytest.fixture
def file_store(tmp_path: Path) -> FileStore:
    """A file store in a temporary directory, used by the files routes."""
    store = FileStore(upload_dir=tmp_path / "uploads", max_size_mb=1)
    app.dependency_overrides[get_file_store] = lambda: store
    yield store
    app.dependency_overrides.pop(get_file_store, None)


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
