"""Shared test fixtures for Momentum tests.

This module provides common fixtures used across all test modules:
- Database isolation with temporary files
- A SqliteStore on that file, optionally seeded with system templates
- Standard user ids and a fixed "now"
- A task factory that writes rows through the store

Usage:
    @pytest.mark.asyncio
    async def test_something(store, make_task):
        task = await make_task(title="Write report")
"""

import os
import tempfile
from collections.abc import Generator
from datetime import datetime
from pathlib import Path

import pytest
import pytest_asyncio

from momentum.models import Category, Priority, Task
from momentum.storage import SqliteStore
from momentum.tasks.templates import seed_system_templates


# ─────────────────────────────────────────────────────────────────────────────
# Path Constants
# ─────────────────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).parent.parent


# ─────────────────────────────────────────────────────────────────────────────
# Database Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def temp_db() -> Generator[Path, None, None]:
    """Create a temporary database file for testing.

    The database file is automatically deleted after the test completes.

    Yields:
        Path to the temporary database file
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    if db_path.exists():
        os.unlink(db_path)


@pytest.fixture
def store(temp_db: Path) -> SqliteStore:
    """Empty store on the temporary database."""
    return SqliteStore(temp_db)


@pytest_asyncio.fixture
async def seeded_store(store: SqliteStore) -> SqliteStore:
    """Store with the static templates written as system rows."""
    await seed_system_templates(store)
    return store


# ─────────────────────────────────────────────────────────────────────────────
# User Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def mock_user_id() -> str:
    """Standard test user ID."""
    return "test_user_123"


@pytest.fixture
def other_user_id() -> str:
    """A second user, for ownership checks."""
    return "other_user_456"


@pytest.fixture
def fixed_now() -> datetime:
    """Wednesday 2026-03-11 10:30 local."""
    return datetime(2026, 3, 11, 10, 30)


# ─────────────────────────────────────────────────────────────────────────────
# Task Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def make_task(store: SqliteStore, mock_user_id: str):
    """Factory that inserts a task row and returns it as a Task.

    Defaults to a pending, medium-priority work task for mock_user_id.
    """

    async def _make(**fields) -> Task:
        row = {
            "user_id": mock_user_id,
            "title": "Write quarterly report",
            "category": "work",
            "priority": "medium",
            "status": "pending",
        }
        row.update(fields)
        rows = await store.insert("tasks", [row])
        return Task.from_dict(rows[0])

    return _make


@pytest.fixture
def sample_task(mock_user_id: str) -> Task:
    """Unsaved high-priority work task with a 100 minute estimate."""
    return Task(
        id="task_sample",
        user_id=mock_user_id,
        title="Prepare board deck",
        category=Category.WORK,
        priority=Priority.HIGH,
        estimated_minutes=100,
    )
