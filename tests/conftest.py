"""Pytest configuration and fixtures."""

import tempfile
from collections.abc import AsyncGenerator, Generator
from datetime import datetime, timezone
from pathlib import Path

import pytest
from focusflow.infrastructure.database import Database
from focusflow.services import EventBus, TrackerService


def utc_ms(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> int:
    """Epoch milliseconds of a UTC wall time."""
    return int(datetime(year, month, day, hour, minute, tzinfo=timezone.utc).timestamp() * 1000)


class Helpers:
    """Helper functions for tests."""

    utc_ms = staticmethod(utc_ms)


@pytest.fixture
def helpers() -> type[Helpers]:
    """Provide helper functions to tests."""
    return Helpers


# Database fixtures
@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Create temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    # Cleanup
    if db_path.exists():
        db_path.unlink()
    # Also cleanup WAL files
    for suffix in (".db-wal", ".db-shm"):
        sidecar = db_path.with_suffix(suffix)
        if sidecar.exists():
            sidecar.unlink()


@pytest.fixture
async def memory_db() -> AsyncGenerator[Database, None]:
    """Create in-memory database for fast tests.

    Day boundaries and recurrence use UTC so results do not depend on the
    machine's zone.
    """
    db = Database(Path(":memory:"), tz=timezone.utc)
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
async def file_db(temp_db_path: Path) -> AsyncGenerator[Database, None]:
    """Create file-based database for persistence tests."""
    db = Database(temp_db_path, tz=timezone.utc)
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def tracker(memory_db: Database, event_bus: EventBus) -> TrackerService:
    """Operation facade over the in-memory database."""
    return TrackerService(memory_db, event_bus)
