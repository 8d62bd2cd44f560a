"""Unit tests for versioned schema migrations."""

import sqlite3
from collections.abc import AsyncGenerator
from pathlib import Path

import aiosqlite
import pytest
from aiosqlite import Connection
from focusflow.infrastructure.database import Database
from focusflow.infrastructure.exceptions import MigrationError
from focusflow.infrastructure.migrations import (
    CURRENT_SCHEMA_VERSION,
    MIGRATIONS,
    Migration,
    SchemaMigrator,
    column_exists,
    table_exists,
)


@pytest.fixture
async def raw_conn() -> AsyncGenerator[Connection, None]:
    """Bare autocommit in-memory connection."""
    conn = await aiosqlite.connect(":memory:", isolation_level=None)
    yield conn
    await conn.close()


def _create_legacy_store(path: Path) -> None:
    """Build a store as written before version tracking: reminders but no organization."""
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE projects (
            id TEXT PRIMARY KEY, name TEXT NOT NULL, color TEXT NOT NULL,
            priority INTEGER NOT NULL DEFAULT 1, created_at INTEGER NOT NULL
        );
        CREATE TABLE tasks (
            id TEXT PRIMARY KEY, project_id TEXT, title TEXT NOT NULL, description TEXT,
            priority INTEGER NOT NULL DEFAULT 1, status INTEGER NOT NULL DEFAULT 0,
            created_at INTEGER NOT NULL, completed_at INTEGER, deadline INTEGER,
            estimated_minutes INTEGER, actual_minutes INTEGER NOT NULL DEFAULT 0,
            tags TEXT NOT NULL DEFAULT '[]', remind_at INTEGER, reminded_at INTEGER
        );
        CREATE TABLE focus_sessions (
            id TEXT PRIMARY KEY, task_id TEXT, duration_minutes INTEGER NOT NULL,
            completed INTEGER NOT NULL, started_at INTEGER NOT NULL, ended_at INTEGER
        );
        CREATE TABLE settings (
            id INTEGER PRIMARY KEY, pomodoro_length INTEGER NOT NULL DEFAULT 25,
            short_break_length INTEGER NOT NULL DEFAULT 5,
            long_break_length INTEGER NOT NULL DEFAULT 15,
            pomodoros_until_long_break INTEGER NOT NULL DEFAULT 4,
            sound_enabled INTEGER NOT NULL DEFAULT 1,
            auto_start_breaks INTEGER NOT NULL DEFAULT 0,
            auto_start_pomodoros INTEGER NOT NULL DEFAULT 0,
            global_shortcuts_enabled INTEGER NOT NULL DEFAULT 1,
            start_minimized INTEGER NOT NULL DEFAULT 0,
            close_to_tray INTEGER NOT NULL DEFAULT 1,
            updated_at INTEGER
        );
        INSERT INTO projects VALUES ('p1', 'Work', '#ff0000', 2, 1700000000000);
        INSERT INTO tasks (id, project_id, title, priority, status, created_at, tags, remind_at)
        VALUES ('t1', 'p1', 'Legacy task', 2, 0, 1700000000000, '["old"]', 1700000500000);
        INSERT INTO focus_sessions VALUES ('s1', 't1', 25, 1, 1700000000000, 1700001500000);
        INSERT INTO settings (id, pomodoro_length) VALUES (1, 50);
        """
    )
    conn.commit()
    conn.close()


class TestSchemaHelpers:
    """Tests for table and column existence checks."""

    @pytest.mark.asyncio
    async def test_table_and_column_checks(self, raw_conn: Connection) -> None:
        await raw_conn.execute("CREATE TABLE things (id TEXT)")

        assert await table_exists(raw_conn, "things")
        assert not await table_exists(raw_conn, "missing")
        assert await column_exists(raw_conn, "things", "id")
        assert not await column_exists(raw_conn, "things", "name")


class TestSchemaMigrator:
    """Tests for SchemaMigrator."""

    @pytest.mark.asyncio
    async def test_fresh_store_reaches_current_version(self, raw_conn: Connection) -> None:
        migrator = SchemaMigrator(raw_conn)

        version = await migrator.migrate()

        assert version == CURRENT_SCHEMA_VERSION
        assert await migrator.applied_versions() == [m.version for m in MIGRATIONS]
        for table in ("projects", "tasks", "subtasks", "focus_sessions", "settings"):
            assert await table_exists(raw_conn, table)
        for column in ("remind_at", "reminded_at", "is_archived", "sort_order", "repeat_mode"):
            assert await column_exists(raw_conn, "tasks", column)
        assert await column_exists(raw_conn, "settings", "reminder_lead_minutes")

    @pytest.mark.asyncio
    async def test_migrate_is_idempotent(self, raw_conn: Connection) -> None:
        migrator = SchemaMigrator(raw_conn)
        await migrator.migrate()
        await migrator.migrate()

        assert await migrator.applied_versions() == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_only_pending_versions_applied(self, raw_conn: Connection) -> None:
        """Test a store at version 2 only gets versions 3 and 4."""
        await SchemaMigrator(raw_conn, MIGRATIONS[:2]).migrate()
        assert not await table_exists(raw_conn, "subtasks")

        version = await SchemaMigrator(raw_conn).migrate()

        assert version == 4
        assert await table_exists(raw_conn, "subtasks")

    @pytest.mark.asyncio
    async def test_failed_step_rolls_back(self, raw_conn: Connection) -> None:
        """Test a failing migration leaves no partial changes and no version row."""

        async def broken(conn: Connection) -> None:
            await conn.execute("CREATE TABLE half_done (id TEXT)")
            await conn.execute("ALTER TABLE no_such_table ADD COLUMN x INTEGER")

        migrations = (*MIGRATIONS, Migration(5, "broken", broken))
        migrator = SchemaMigrator(raw_conn, migrations)

        with pytest.raises(MigrationError) as exc_info:
            await migrator.migrate()

        assert exc_info.value.version == 5
        assert not await table_exists(raw_conn, "half_done")
        assert await migrator.current_version() == 4


class TestLegacyStoreMigration:
    """Tests for stores created before version tracking."""

    @pytest.mark.asyncio
    async def test_legacy_store_migrates_without_data_loss(self, temp_db_path: Path) -> None:
        _create_legacy_store(temp_db_path)

        db = Database(temp_db_path)
        await db.initialize()
        try:
            assert await db.schema_version() == CURRENT_SCHEMA_VERSION

            task = await db.get_task("t1")
            assert task is not None
            assert task.title == "Legacy task"
            assert task.tags == ["old"]
            assert task.remind_at == 1700000500000
            assert task.is_archived is False
            assert task.repeat_mode is None

            projects = await db.get_projects()
            assert [p.name for p in projects] == ["Work"]

            settings = await db.get_settings()
            assert settings.pomodoro_length == 50
            assert settings.reminder_lead_minutes == 30

            assert await db.total_focus_minutes() == 25
        finally:
            await db.close()

        # Reopening must not re-apply anything
        db = Database(temp_db_path)
        await db.initialize()
        await db.close()

        conn = sqlite3.connect(temp_db_path)
        try:
            rows = conn.execute(
                "SELECT version, COUNT(*) FROM schema_migrations GROUP BY version ORDER BY version"
            ).fetchall()
        finally:
            conn.close()
        assert rows == [(1, 1), (2, 1), (3, 1), (4, 1)]
