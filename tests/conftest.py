from pathlib import Path

import aiosqlite
import pytest

from mastery_engine.db.database import SCHEMA_PATH
from mastery_engine.services.curriculum import load_catalog_file

ROOT = Path(__file__).resolve().parents[1]
SAMPLE_CURRICULUM = ROOT / "curriculum" / "sample_curriculum.yaml"


async def setup_test_db():
    """In-memory database with the full schema."""
    db = await aiosqlite.connect(":memory:")
    db.row_factory = aiosqlite.Row
    await db.executescript(SCHEMA_PATH.read_text())
    await db.commit()
    return db


@pytest.fixture
def catalog():
    return load_catalog_file(SAMPLE_CURRICULUM)


@pytest.fixture
def open_db():
    """Factory for a fresh in-memory database; call inside the test's event loop."""
    return setup_test_db


@pytest.fixture(autouse=True)
def fresh_goal_locks():
    """Goal locks bind to the event loop that first waits on them; each test runs its own loop."""
    from mastery_engine.services import plan_updater

    plan_updater._goal_locks.clear()
    plan_updater._goal_locks_lock = None
    yield
    plan_updater._goal_locks.clear()
    plan_updater._goal_locks_lock = None
