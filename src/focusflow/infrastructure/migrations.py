"""Versioned schema migrations for the task store.

Each migration only adds tables, columns and indexes, and checks
``PRAGMA table_info`` before every ``ALTER TABLE ... ADD COLUMN`` so it can be
re-run against a store whose shape is ahead of its recorded version (stores
created before version tracking existed).
"""

import sqlite3
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from aiosqlite import Connection

from focusflow.domain.models import now_ms
from focusflow.infrastructure.exceptions import MigrationError
from focusflow.infrastructure.logger import get_logger

logger = get_logger(__name__)


async def table_exists(conn: Connection, table: str) -> bool:
    cursor = await conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    )
    return await cursor.fetchone() is not None


async def column_exists(conn: Connection, table: str, column: str) -> bool:
    cursor = await conn.execute(f"PRAGMA table_info({table})")
    columns = await cursor.fetchall()
    return column in [col[1] for col in columns]


async def add_column_if_missing(conn: Connection, table: str, column: str, ddl: str) -> None:
    """Add ``column`` to ``table`` unless it is already there.

    Args:
        ddl: Column definition after the name, e.g. ``"INTEGER NOT NULL DEFAULT 0"``
    """
    if not await column_exists(conn, table, column):
        logger.info("adding_column", table=table, column=column)
        await conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")


async def _create_base_schema(conn: Connection) -> None:
    """Projects, tasks, focus sessions and the settings singleton."""
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            color TEXT NOT NULL DEFAULT '#6366f1',
            priority INTEGER NOT NULL DEFAULT 1,
            created_at INTEGER NOT NULL
        )
        """
    )

    # project_id is a weak reference: project deletion detaches tasks explicitly
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            project_id TEXT,
            title TEXT NOT NULL,
            description TEXT,
            priority INTEGER NOT NULL DEFAULT 1,
            status INTEGER NOT NULL DEFAULT 0,
            created_at INTEGER NOT NULL,
            completed_at INTEGER,
            deadline INTEGER,
            estimated_minutes INTEGER,
            actual_minutes INTEGER NOT NULL DEFAULT 0,
            tags TEXT NOT NULL DEFAULT '[]'
        )
        """
    )

    # Sessions outlive their task, so no foreign key here
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS focus_sessions (
            id TEXT PRIMARY KEY,
            task_id TEXT,
            duration_minutes INTEGER NOT NULL DEFAULT 0,
            completed INTEGER NOT NULL DEFAULT 0,
            started_at INTEGER NOT NULL,
            ended_at INTEGER
        )
        """
    )

    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            pomodoro_length INTEGER NOT NULL DEFAULT 25,
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
        )
        """
    )

    await conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project_id ON tasks(project_id)")
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_completed_at ON tasks(completed_at)")
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at)")
    await conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_focus_sessions_task_id ON focus_sessions(task_id)"
    )


async def _add_reminders(conn: Connection) -> None:
    await add_column_if_missing(conn, "tasks", "remind_at", "INTEGER")
    await add_column_if_missing(conn, "tasks", "reminded_at", "INTEGER")
    await add_column_if_missing(
        conn, "settings", "reminder_lead_minutes", "INTEGER NOT NULL DEFAULT 30"
    )
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_remind_at ON tasks(remind_at)")


async def _add_organization(conn: Connection) -> None:
    """Archival, manual ordering and subtasks."""
    await add_column_if_missing(conn, "tasks", "is_archived", "INTEGER NOT NULL DEFAULT 0")
    await add_column_if_missing(conn, "tasks", "sort_order", "INTEGER NOT NULL DEFAULT 0")
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS subtasks (
            id TEXT PRIMARY KEY,
            task_id TEXT NOT NULL,
            title TEXT NOT NULL,
            completed INTEGER NOT NULL DEFAULT 0,
            sort_order INTEGER NOT NULL DEFAULT 0,
            created_at INTEGER NOT NULL,
            FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
        )
        """
    )
    await conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_subtasks_task_id ON subtasks(task_id, sort_order)"
    )


async def _add_recurrence(conn: Connection) -> None:
    await add_column_if_missing(conn, "tasks", "repeat_mode", "TEXT")
    await add_column_if_missing(conn, "tasks", "repeat_days_mask", "INTEGER")


@dataclass(frozen=True)
class Migration:
    """One schema step, applied at most once."""

    version: int
    name: str
    apply: Callable[[Connection], Awaitable[None]]


MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "base_schema", _create_base_schema),
    Migration(2, "reminders", _add_reminders),
    Migration(3, "organization", _add_organization),
    Migration(4, "recurrence", _add_recurrence),
)

CURRENT_SCHEMA_VERSION = MIGRATIONS[-1].version


class SchemaMigrator:
    """Brings a store up to the latest schema version.

    The connection must be in autocommit mode (``isolation_level=None``) so
    each step can run inside its own ``BEGIN IMMEDIATE`` transaction.
    """

    def __init__(self, conn: Connection, migrations: Sequence[Migration] = MIGRATIONS) -> None:
        self.conn = conn
        self.migrations = sorted(migrations, key=lambda m: m.version)

    async def current_version(self) -> int:
        """Highest applied version, 0 for a fresh or pre-versioned store."""
        if not await table_exists(self.conn, "schema_migrations"):
            return 0
        cursor = await self.conn.execute("SELECT MAX(version) FROM schema_migrations")
        row = await cursor.fetchone()
        return int(row[0]) if row and row[0] is not None else 0

    async def applied_versions(self) -> list[int]:
        cursor = await self.conn.execute("SELECT version FROM schema_migrations ORDER BY version")
        return [int(row[0]) for row in await cursor.fetchall()]

    async def migrate(self) -> int:
        """Apply every pending migration in ascending order.

        Returns:
            Schema version after migrating

        Raises:
            MigrationError: A step failed; that step was rolled back
        """
        await self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            )
            """
        )

        current = await self.current_version()
        if current == 0 and await table_exists(self.conn, "tasks"):
            logger.info("legacy_store_detected", action="migrating_in_place")

        pending = [m for m in self.migrations if m.version > current]
        for migration in pending:
            await self._apply(migration)

        version = await self.current_version()
        if pending:
            logger.info("schema_migrated", from_version=current, to_version=version)
        return version

    async def _apply(self, migration: Migration) -> None:
        await self.conn.execute("BEGIN IMMEDIATE")
        try:
            await migration.apply(self.conn)
            await self.conn.execute(
                "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (migration.version, now_ms()),
            )
            await self.conn.execute("COMMIT")
        except (sqlite3.Error, ValueError) as e:
            await self.conn.execute("ROLLBACK")
            logger.error(
                "migration_failed",
                version=migration.version,
                name=migration.name,
                error=str(e),
            )
            raise MigrationError(migration.version, str(e)) from e

        logger.info("migration_applied", version=migration.version, name=migration.name)
