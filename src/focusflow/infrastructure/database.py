"""Task store using SQLite with WAL mode."""

import asyncio
import json
import sqlite3
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import tzinfo
from pathlib import Path
from typing import Any

import aiosqlite
from aiosqlite import Connection
from pydantic import ValidationError

from focusflow.domain.models import (
    ALL_DAYS_MASK,
    BACKUP_FORMAT_VERSION,
    AppSettings,
    BackupBundle,
    DbHealth,
    FocusSession,
    NewTask,
    Priority,
    Project,
    RepeatMode,
    Status,
    Subtask,
    Task,
    new_id,
    now_ms,
)
from focusflow.domain.recurrence import next_deadline
from focusflow.infrastructure.exceptions import (
    ConstraintViolationError,
    StoreUnavailableError,
    translate_sqlite_error,
)
from focusflow.infrastructure.logger import get_logger
from focusflow.infrastructure.migrations import SchemaMigrator

logger = get_logger(__name__)

DUE_REMINDER_BATCH = 20

_DUE_REMINDERS_SQL = """
    SELECT * FROM tasks
    WHERE status != 2
      AND remind_at IS NOT NULL
      AND remind_at <= ?
    ORDER BY remind_at ASC
    LIMIT ?
"""

TASK_COLUMNS = (
    "id",
    "project_id",
    "title",
    "description",
    "priority",
    "status",
    "created_at",
    "completed_at",
    "deadline",
    "estimated_minutes",
    "actual_minutes",
    "tags",
    "remind_at",
    "reminded_at",
    "repeat_mode",
    "repeat_days_mask",
    "is_archived",
    "sort_order",
)

SETTINGS_COLUMNS = (
    "pomodoro_length",
    "short_break_length",
    "long_break_length",
    "pomodoros_until_long_break",
    "sound_enabled",
    "auto_start_breaks",
    "auto_start_pomodoros",
    "global_shortcuts_enabled",
    "start_minimized",
    "close_to_tray",
    "reminder_lead_minutes",
)


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ConstraintViolationError(f"{field} must not be empty")
    return value.strip()


def validate_repeat(mode: RepeatMode | None, mask: int | None) -> int | None:
    """Check a repeat rule and return the mask to store.

    Only CUSTOM keeps a mask, which must select at least one weekday.
    """
    if mode == RepeatMode.CUSTOM:
        if mask is None or not 1 <= mask <= ALL_DAYS_MASK:
            raise ConstraintViolationError(
                f"Custom repeat needs a weekday mask between 1 and {ALL_DAYS_MASK}, got {mask}"
            )
        return mask
    return None


def reminder_for(deadline: int | None, lead_minutes: int, now: int) -> int | None:
    """Reminder instant for a deadline: lead time before it, never in the past."""
    if deadline is None:
        return None
    return max(deadline - lead_minutes * 60_000, now)


class Database:
    """SQLite task store with WAL mode.

    Owns a single connection. Every operation, read or write, runs under one
    ``asyncio.Lock`` whose acquisition waits at most ``lock_timeout_seconds``.
    """

    def __init__(
        self,
        db_path: Path,
        busy_timeout_ms: int = 5000,
        lock_timeout_seconds: float = 5.0,
        tz: tzinfo | None = None,
    ) -> None:
        """Initialize database.

        Args:
            db_path: Path to SQLite database file (``:memory:`` for tests)
            busy_timeout_ms: SQLite busy wait on file lock contention
            lock_timeout_seconds: Maximum wait for the connection lock
            tz: Zone for recurrence dates, None for system local time
        """
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self.lock_timeout_seconds = lock_timeout_seconds
        self.tz = tz
        self._conn: Connection | None = None
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Open the connection, configure the store and run migrations."""
        if self._initialized:
            return

        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode; multi-step writes use explicit BEGIN IMMEDIATE
        conn = await aiosqlite.connect(str(self.db_path), isolation_level=None)
        conn.row_factory = aiosqlite.Row
        try:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            await conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")

            version = await SchemaMigrator(conn).migrate()
        except BaseException:
            await conn.close()
            raise

        self._conn = conn
        self._initialized = True
        logger.info("database_initialized", db_path=str(self.db_path), schema_version=version)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            self._initialized = False

    @asynccontextmanager
    async def _locked(self) -> AsyncIterator[Connection]:
        """Hold the connection lock, translating SQLite errors."""
        conn = self._conn
        if conn is None:
            raise StoreUnavailableError("Task store is not initialized")

        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self.lock_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("store_lock_timeout", timeout_seconds=self.lock_timeout_seconds)
            raise StoreUnavailableError(
                f"Task store lock not acquired within {self.lock_timeout_seconds}s"
            ) from None

        try:
            yield conn
        except sqlite3.Error as e:
            translated = translate_sqlite_error(e)
            if translated is None:
                raise
            raise translated from e
        finally:
            self._lock.release()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[Connection]:
        """Hold the lock inside one BEGIN IMMEDIATE transaction.

        Any exception rolls the whole transaction back.
        """
        async with self._locked() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                await conn.execute("COMMIT")
            except BaseException:
                await conn.execute("ROLLBACK")
                raise

    async def schema_version(self) -> int:
        async with self._locked() as conn:
            return await SchemaMigrator(conn).current_version()

    async def health(self) -> DbHealth:
        """Report store location, tables and whether it holds any data."""
        async with self._locked() as conn:
            cursor = await conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' "
                "AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
            tables = [row["name"] for row in await cursor.fetchall()]
            cursor = await conn.execute("SELECT EXISTS(SELECT 1 FROM tasks)")
            has_tasks = bool((await cursor.fetchone())[0])
            cursor = await conn.execute("SELECT EXISTS(SELECT 1 FROM projects)")
            has_projects = bool((await cursor.fetchone())[0])
            version = await SchemaMigrator(conn).current_version()

        return DbHealth(
            db_path=str(self.db_path),
            tables=tables,
            has_tasks=has_tasks,
            has_projects=has_projects,
            schema_version=version,
        )

    # Settings

    async def get_settings(self) -> AppSettings:
        """Return stored settings, or defaults when the row is missing."""
        async with self._locked() as conn:
            return await self._fetch_settings(conn)

    async def save_settings(self, settings: AppSettings) -> None:
        """Upsert the singleton settings row."""
        columns = ", ".join(SETTINGS_COLUMNS)
        placeholders = ", ".join("?" for _ in SETTINGS_COLUMNS)
        updates = ", ".join(f"{col} = excluded.{col}" for col in SETTINGS_COLUMNS)
        values = [int(getattr(settings, col)) for col in SETTINGS_COLUMNS]

        async with self._locked() as conn:
            await conn.execute(
                f"""
                INSERT INTO settings (id, {columns}, updated_at)
                VALUES (1, {placeholders}, ?)
                ON CONFLICT(id) DO UPDATE SET {updates}, updated_at = excluded.updated_at
                """,
                (*values, now_ms()),
            )

    async def _fetch_settings(self, conn: Connection) -> AppSettings:
        cursor = await conn.execute(
            f"SELECT {', '.join(SETTINGS_COLUMNS)} FROM settings WHERE id = 1"
        )
        row = await cursor.fetchone()
        if row is None:
            return AppSettings()
        try:
            return AppSettings(**dict(row))
        except ValidationError as e:
            # Out-of-range values from a legacy store or a manual edit
            logger.warning("invalid_settings_row", error_count=e.error_count())
            return AppSettings()

    # Projects

    async def add_project(
        self,
        name: str,
        color: str = "#6366f1",
        priority: Priority = Priority.NORMAL,
        project_id: str | None = None,
    ) -> Project:
        """Insert a new project and return it."""
        project = Project(
            id=project_id or new_id(),
            name=_require_text(name, "Project name"),
            color=color or "#6366f1",
            priority=priority,
        )
        async with self._locked() as conn:
            await conn.execute(
                "INSERT INTO projects (id, name, color, priority, created_at) VALUES (?, ?, ?, ?, ?)",
                (
                    project.id,
                    project.name,
                    project.color,
                    project.priority.to_db(),
                    project.created_at,
                ),
            )
        return project

    async def get_project(self, project_id: str) -> Project | None:
        async with self._locked() as conn:
            cursor = await conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,))
            row = await cursor.fetchone()
            return self._row_to_project(row) if row else None

    async def get_projects(self) -> list[Project]:
        """List projects, highest priority and newest first."""
        async with self._locked() as conn:
            cursor = await conn.execute(
                "SELECT * FROM projects ORDER BY priority DESC, created_at DESC"
            )
            return [self._row_to_project(row) for row in await cursor.fetchall()]

    async def update_project_name(self, project_id: str, name: str) -> None:
        name = _require_text(name, "Project name")
        async with self._locked() as conn:
            await conn.execute("UPDATE projects SET name = ? WHERE id = ?", (name, project_id))

    async def update_project_priority(self, project_id: str, priority: Priority) -> None:
        async with self._locked() as conn:
            await conn.execute(
                "UPDATE projects SET priority = ? WHERE id = ?", (priority.to_db(), project_id)
            )

    async def delete_project(self, project_id: str) -> bool:
        """Delete a project, detaching its tasks.

        Returns:
            True if a project was deleted
        """
        async with self._transaction() as conn:
            await conn.execute(
                "UPDATE tasks SET project_id = NULL WHERE project_id = ?", (project_id,)
            )
            cursor = await conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            return cursor.rowcount > 0

    # Tasks

    async def add_task(self, new_task: NewTask, now: int | None = None) -> Task:
        """Insert a task and return it with server-filled fields.

        A task with a deadline and no explicit reminder gets one at
        ``deadline - reminder_lead_minutes``, clamped to now.

        Raises:
            ConstraintViolationError: Empty title, unknown project or bad repeat rule
        """
        now = now if now is not None else now_ms()
        title = _require_text(new_task.title, "Task title")
        mask = validate_repeat(new_task.repeat_mode, new_task.repeat_days_mask)
        tags = _clean_tags(new_task.tags)

        async with self._transaction() as conn:
            if new_task.project_id is not None:
                await self._require_row(conn, "projects", new_task.project_id, "Project")

            remind_at = new_task.remind_at
            if remind_at is None and new_task.deadline is not None:
                settings = await self._fetch_settings(conn)
                remind_at = reminder_for(new_task.deadline, settings.reminder_lead_minutes, now)

            cursor = await conn.execute("SELECT COALESCE(MAX(sort_order), -1) + 1 FROM tasks")
            sort_order = (await cursor.fetchone())[0]

            task = Task(
                id=new_task.id or new_id(),
                project_id=new_task.project_id,
                title=title,
                description=new_task.description,
                priority=new_task.priority,
                status=Status.TODO,
                created_at=now,
                deadline=new_task.deadline,
                estimated_minutes=new_task.estimated_minutes,
                tags=tags,
                remind_at=remind_at,
                repeat_mode=new_task.repeat_mode,
                repeat_days_mask=mask,
                sort_order=sort_order,
            )
            await self._insert_task(conn, task)

        logger.debug("task_added", task_id=task.id, project_id=task.project_id)
        return task

    async def get_task(self, task_id: str) -> Task | None:
        """Get task by ID, with its subtasks."""
        async with self._locked() as conn:
            task = await self._fetch_task(conn, task_id)
            if task is not None:
                await self._attach_subtasks(conn, [task])
            return task

    async def get_tasks(
        self,
        limit: int | None = None,
        status: Status | None = None,
        project_id: str | None = None,
        archived: bool | None = False,
        manual_order: bool = False,
    ) -> list[Task]:
        """List tasks with optional filters.

        Args:
            limit: Maximum number of tasks to return (None = all)
            status: Filter by task status
            project_id: Filter by project
            archived: Filter by archive flag (None = both)
            manual_order: Order by sort_order instead of priority/deadline

        Returns:
            Tasks ordered by priority desc, deadline asc (nulls last),
            created_at desc, unless manual_order is set
        """
        where_clauses: list[str] = []
        params: list[Any] = []

        if status is not None:
            where_clauses.append("status = ?")
            params.append(status.to_db())

        if project_id is not None:
            where_clauses.append("project_id = ?")
            params.append(project_id)

        if archived is not None:
            where_clauses.append("is_archived = ?")
            params.append(int(archived))

        where_sql = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""

        if manual_order:
            order_sql = "ORDER BY sort_order ASC, created_at DESC"
        else:
            order_sql = "ORDER BY priority DESC, deadline IS NULL, deadline ASC, created_at DESC"

        query = f"SELECT * FROM tasks {where_sql} {order_sql}"
        if limit is not None:
            query += " LIMIT ?"
            params.append(max(limit, 0))

        async with self._locked() as conn:
            cursor = await conn.execute(query, tuple(params))
            tasks = [self._row_to_task(row) for row in await cursor.fetchall()]
            await self._attach_subtasks(conn, tasks)
            return tasks

    async def update_task_title(self, task_id: str, title: str) -> None:
        title = _require_text(title, "Task title")
        async with self._locked() as conn:
            await conn.execute("UPDATE tasks SET title = ? WHERE id = ?", (title, task_id))

    async def update_task_description(self, task_id: str, description: str | None) -> None:
        async with self._locked() as conn:
            await conn.execute(
                "UPDATE tasks SET description = ? WHERE id = ?", (description or None, task_id)
            )

    async def update_task_priority(self, task_id: str, priority: Priority) -> None:
        async with self._locked() as conn:
            await conn.execute(
                "UPDATE tasks SET priority = ? WHERE id = ?", (priority.to_db(), task_id)
            )

    async def update_task_deadline(
        self, task_id: str, deadline: int | None, now: int | None = None
    ) -> None:
        """Set or clear a deadline and reschedule its reminder.

        Clears reminded_at. Done tasks keep no pending reminder.
        """
        now = now if now is not None else now_ms()
        async with self._transaction() as conn:
            settings = await self._fetch_settings(conn)
            remind_at = reminder_for(deadline, settings.reminder_lead_minutes, now)
            await conn.execute(
                """
                UPDATE tasks
                SET deadline = ?,
                    remind_at = CASE WHEN status = 2 THEN NULL ELSE ? END,
                    reminded_at = NULL
                WHERE id = ?
                """,
                (deadline, remind_at, task_id),
            )

    async def update_task_tags(self, task_id: str, tags: Iterable[str]) -> None:
        async with self._locked() as conn:
            await conn.execute(
                "UPDATE tasks SET tags = ? WHERE id = ?",
                (json.dumps(_clean_tags(tags)), task_id),
            )

    async def update_task_repeat(
        self, task_id: str, mode: RepeatMode | None, mask: int | None = None
    ) -> None:
        """Set the recurrence rule; CUSTOM needs a non-empty weekday mask."""
        mask = validate_repeat(mode, mask)
        async with self._locked() as conn:
            await conn.execute(
                "UPDATE tasks SET repeat_mode = ?, repeat_days_mask = ? WHERE id = ?",
                (mode.value if mode else None, mask, task_id),
            )

    async def update_task_status(
        self, task_id: str, status: Status, now: int | None = None
    ) -> Task | None:
        """Move a task to a new status.

        Completing a task stamps completed_at and drops its pending reminder.
        Completing a repeating task also inserts its next occurrence and
        clears the repeat rule on the completed one, in the same transaction.
        Leaving DONE clears completed_at.

        Returns:
            The spawned successor task, or None
        """
        now = now if now is not None else now_ms()
        async with self._transaction() as conn:
            task = await self._fetch_task(conn, task_id)
            if task is None:
                return None

            if status != Status.DONE:
                await conn.execute(
                    "UPDATE tasks SET status = ?, completed_at = NULL WHERE id = ?",
                    (status.to_db(), task_id),
                )
                return None

            if task.status == Status.DONE:
                # Already done: keep the original completion time, spawn nothing
                await conn.execute("UPDATE tasks SET remind_at = NULL WHERE id = ?", (task_id,))
                return None

            await conn.execute(
                "UPDATE tasks SET status = ?, completed_at = ?, remind_at = NULL WHERE id = ?",
                (Status.DONE.to_db(), now, task_id),
            )

            if task.repeat_mode is None:
                return None

            successor = await self._spawn_next_occurrence(conn, task, now)
            if successor is None:
                return None

        logger.info(
            "recurring_task_spawned",
            task_id=task_id,
            successor_id=successor.id,
            deadline=successor.deadline,
        )
        return successor

    async def _spawn_next_occurrence(self, conn: Connection, task: Task, now: int) -> Task | None:
        deadline = next_deadline(
            task.repeat_mode, task.repeat_days_mask, task.deadline, now, self.tz
        )
        if deadline is None:
            logger.warning(
                "recurrence_without_next_date",
                task_id=task.id,
                repeat_mode=task.repeat_mode.value if task.repeat_mode else None,
                repeat_days_mask=task.repeat_days_mask,
            )
            return None

        settings = await self._fetch_settings(conn)
        successor = Task(
            project_id=task.project_id,
            title=task.title,
            description=task.description,
            priority=task.priority,
            status=Status.TODO,
            created_at=now,
            deadline=deadline,
            estimated_minutes=task.estimated_minutes,
            tags=list(task.tags),
            remind_at=reminder_for(deadline, settings.reminder_lead_minutes, now),
            repeat_mode=task.repeat_mode,
            repeat_days_mask=task.repeat_days_mask,
            sort_order=task.sort_order,
        )
        await self._insert_task(conn, successor)
        await conn.execute(
            "UPDATE tasks SET repeat_mode = NULL, repeat_days_mask = NULL WHERE id = ?",
            (task.id,),
        )
        return successor

    async def archive_task(self, task_id: str) -> None:
        async with self._locked() as conn:
            await conn.execute("UPDATE tasks SET is_archived = 1 WHERE id = ?", (task_id,))

    async def unarchive_task(self, task_id: str) -> None:
        async with self._locked() as conn:
            await conn.execute("UPDATE tasks SET is_archived = 0 WHERE id = ?", (task_id,))

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task and its subtasks. Focus sessions are kept.

        Returns:
            True if a task was deleted
        """
        async with self._transaction() as conn:
            await conn.execute("DELETE FROM subtasks WHERE task_id = ?", (task_id,))
            cursor = await conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            return cursor.rowcount > 0

    async def reorder_tasks(self, task_ids: list[str]) -> int:
        """Set sort_order to each id's position. Unknown ids are skipped."""
        return await self._reorder("tasks", task_ids)

    async def _reorder(self, table: str, ids: list[str]) -> int:
        updated = 0
        async with self._transaction() as conn:
            for index, row_id in enumerate(ids):
                cursor = await conn.execute(
                    f"UPDATE {table} SET sort_order = ? WHERE id = ?", (index, row_id)
                )
                updated += cursor.rowcount
        return updated

    # Subtasks

    async def add_subtask(self, task_id: str, title: str, subtask_id: str | None = None) -> Subtask:
        """Append a subtask to a task's checklist."""
        title = _require_text(title, "Subtask title")
        async with self._transaction() as conn:
            await self._require_row(conn, "tasks", task_id, "Task")
            cursor = await conn.execute(
                "SELECT COALESCE(MAX(sort_order), -1) + 1 FROM subtasks WHERE task_id = ?",
                (task_id,),
            )
            sort_order = (await cursor.fetchone())[0]
            subtask = Subtask(
                id=subtask_id or new_id(), task_id=task_id, title=title, sort_order=sort_order
            )
            await self._upsert_subtask(conn, subtask)
        return subtask

    async def get_subtasks(self, task_id: str) -> list[Subtask]:
        async with self._locked() as conn:
            cursor = await conn.execute(
                "SELECT * FROM subtasks WHERE task_id = ? ORDER BY sort_order ASC, created_at ASC",
                (task_id,),
            )
            return [self._row_to_subtask(row) for row in await cursor.fetchall()]

    async def toggle_subtask(self, subtask_id: str) -> Subtask | None:
        """Flip a subtask's completed flag and return it."""
        async with self._locked() as conn:
            await conn.execute(
                "UPDATE subtasks SET completed = 1 - completed WHERE id = ?", (subtask_id,)
            )
            cursor = await conn.execute("SELECT * FROM subtasks WHERE id = ?", (subtask_id,))
            row = await cursor.fetchone()
            return self._row_to_subtask(row) if row else None

    async def delete_subtask(self, subtask_id: str) -> bool:
        async with self._locked() as conn:
            cursor = await conn.execute("DELETE FROM subtasks WHERE id = ?", (subtask_id,))
            return cursor.rowcount > 0

    async def reorder_subtasks(self, subtask_ids: list[str]) -> int:
        return await self._reorder("subtasks", subtask_ids)

    # Focus sessions

    async def start_focus_session(self, task_id: str | None = None) -> FocusSession:
        """Open a focus session, optionally bound to a task."""
        session = FocusSession(task_id=task_id)
        async with self._transaction() as conn:
            if task_id is not None:
                await self._require_row(conn, "tasks", task_id, "Task")
            await conn.execute(
                """
                INSERT INTO focus_sessions (id, task_id, duration_minutes, completed, started_at, ended_at)
                VALUES (?, ?, 0, 0, ?, NULL)
                """,
                (session.id, session.task_id, session.started_at),
            )
        logger.debug("focus_session_started", session_id=session.id, task_id=task_id)
        return session

    async def finish_focus_session(
        self,
        session_id: str,
        duration_minutes: int,
        completed: bool = True,
        now: int | None = None,
    ) -> bool:
        """Close a session. ``completed=False`` records a cancelled session."""
        if duration_minutes < 0:
            raise ConstraintViolationError("Focus duration must not be negative")
        async with self._locked() as conn:
            cursor = await conn.execute(
                """
                UPDATE focus_sessions
                SET duration_minutes = ?, completed = ?, ended_at = ?
                WHERE id = ?
                """,
                (
                    duration_minutes,
                    int(completed),
                    now if now is not None else now_ms(),
                    session_id,
                ),
            )
            return cursor.rowcount > 0

    async def get_focus_sessions(self, task_id: str | None = None) -> list[FocusSession]:
        query = "SELECT * FROM focus_sessions"
        params: tuple[Any, ...] = ()
        if task_id is not None:
            query += " WHERE task_id = ?"
            params = (task_id,)
        async with self._locked() as conn:
            cursor = await conn.execute(f"{query} ORDER BY started_at ASC", params)
            return [self._row_to_session(row) for row in await cursor.fetchall()]

    # Reminders

    async def set_task_remind_at(self, task_id: str, remind_at: int | None) -> None:
        async with self._locked() as conn:
            await conn.execute(
                "UPDATE tasks SET remind_at = ?, reminded_at = NULL WHERE id = ?",
                (remind_at, task_id),
            )

    async def snooze_task(self, task_id: str, minutes: int, now: int | None = None) -> int:
        """Re-arm a reminder ``minutes`` from now (at least one minute).

        Returns:
            The new remind_at instant
        """
        now = now if now is not None else now_ms()
        remind_at = now + max(minutes, 1) * 60_000
        await self.set_task_remind_at(task_id, remind_at)
        return remind_at

    async def get_due_reminders(
        self, now: int | None = None, limit: int = DUE_REMINDER_BATCH
    ) -> list[Task]:
        """Open tasks whose reminder time has passed, oldest first."""
        async with self._locked() as conn:
            cursor = await conn.execute(
                _DUE_REMINDERS_SQL, (now if now is not None else now_ms(), limit)
            )
            return [self._row_to_task(row) for row in await cursor.fetchall()]

    async def claim_due_reminders(
        self, now: int | None = None, limit: int = DUE_REMINDER_BATCH
    ) -> list[Task]:
        """Select due reminders and mark them reminded in one transaction.

        Only rows this call actually marked are returned, so a reminder
        is never delivered twice and a task snoozed or completed in the
        meantime is not delivered at all.
        """
        now = now if now is not None else now_ms()
        claimed: list[Task] = []
        async with self._transaction() as conn:
            cursor = await conn.execute(_DUE_REMINDERS_SQL, (now, limit))
            for row in await cursor.fetchall():
                task = self._row_to_task(row)
                if await self._mark_one_reminded(conn, task.id, now):
                    claimed.append(
                        task.model_copy(update={"remind_at": None, "reminded_at": now})
                    )
        return claimed

    async def _mark_one_reminded(self, conn: Connection, task_id: str, now: int) -> bool:
        cursor = await conn.execute(
            """
            UPDATE tasks SET reminded_at = ?, remind_at = NULL
            WHERE id = ?
              AND status != 2
              AND remind_at IS NOT NULL
              AND remind_at <= ?
            """,
            (now, task_id, now),
        )
        return cursor.rowcount > 0

    async def mark_reminded(self, task_ids: list[str], now: int | None = None) -> int:
        """Record delivered reminders in one transaction.

        Only open tasks whose reminder is set and already due are touched, so
        repeating the call is a no-op and a later snooze is not overwritten.

        Returns:
            Number of tasks marked
        """
        if not task_ids:
            return 0
        now = now if now is not None else now_ms()
        marked = 0
        async with self._transaction() as conn:
            for task_id in task_ids:
                marked += await self._mark_one_reminded(conn, task_id, now)
        return marked

    # Stats reads

    async def count_tasks(self) -> int:
        return await self._scalar("SELECT COUNT(*) FROM tasks")

    async def count_completed_tasks(self) -> int:
        return await self._scalar("SELECT COUNT(*) FROM tasks WHERE status = 2")

    async def count_completed_between(self, start_ms: int, end_ms: int) -> int:
        """Tasks completed in ``[start_ms, end_ms)``."""
        return await self._scalar(
            "SELECT COUNT(*) FROM tasks WHERE completed_at >= ? AND completed_at < ?",
            (start_ms, end_ms),
        )

    async def count_created_between(self, start_ms: int, end_ms: int) -> int:
        return await self._scalar(
            "SELECT COUNT(*) FROM tasks WHERE created_at >= ? AND created_at < ?",
            (start_ms, end_ms),
        )

    async def total_focus_minutes(self) -> int:
        """Minutes over completed focus sessions only."""
        return await self._scalar(
            "SELECT COALESCE(SUM(duration_minutes), 0) FROM focus_sessions WHERE completed = 1"
        )

    async def list_completion_times(self, since_ms: int | None = None) -> list[int]:
        query = "SELECT completed_at FROM tasks WHERE completed_at IS NOT NULL"
        params: tuple[Any, ...] = ()
        if since_ms is not None:
            query += " AND completed_at >= ?"
            params = (since_ms,)
        async with self._locked() as conn:
            cursor = await conn.execute(f"{query} ORDER BY completed_at ASC", params)
            return [int(row[0]) for row in await cursor.fetchall()]

    async def _scalar(self, query: str, params: tuple[Any, ...] = ()) -> int:
        async with self._locked() as conn:
            cursor = await conn.execute(query, params)
            row = await cursor.fetchone()
            return int(row[0]) if row and row[0] is not None else 0

    # Bulk

    async def export_data(self) -> BackupBundle:
        """Snapshot every project and task (archived included) plus settings."""
        async with self._locked() as conn:
            cursor = await conn.execute("SELECT * FROM projects ORDER BY created_at ASC")
            projects = [self._row_to_project(row) for row in await cursor.fetchall()]
            cursor = await conn.execute("SELECT * FROM tasks ORDER BY created_at ASC")
            tasks = [self._row_to_task(row) for row in await cursor.fetchall()]
            await self._attach_subtasks(conn, tasks)
            settings = await self._fetch_settings(conn)

        return BackupBundle(projects=projects, tasks=tasks, settings=settings)

    async def import_data(self, bundle: BackupBundle) -> dict[str, int]:
        """Upsert a bundle by id. All or nothing.

        Returns:
            Row counts per entity
        """
        if bundle.version > BACKUP_FORMAT_VERSION:
            raise ConstraintViolationError(
                f"Backup format version {bundle.version} is newer than supported "
                f"({BACKUP_FORMAT_VERSION})"
            )

        subtask_count = 0
        async with self._transaction() as conn:
            for project in bundle.projects:
                await conn.execute(
                    """
                    INSERT INTO projects (id, name, color, priority, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        color = excluded.color,
                        priority = excluded.priority,
                        created_at = excluded.created_at
                    """,
                    (
                        project.id,
                        _require_text(project.name, "Project name"),
                        project.color,
                        project.priority.to_db(),
                        project.created_at,
                    ),
                )

            for task in bundle.tasks:
                _require_text(task.title, "Task title")
                task = normalize_imported_task(task, bundle.exported_at)
                await self._insert_task(conn, task, upsert=True)
                for subtask in task.subtasks:
                    await self._upsert_subtask(conn, subtask.model_copy(update={"task_id": task.id}))
                    subtask_count += 1

            if bundle.settings is not None:
                values = [int(getattr(bundle.settings, col)) for col in SETTINGS_COLUMNS]
                updates = ", ".join(f"{col} = excluded.{col}" for col in SETTINGS_COLUMNS)
                await conn.execute(
                    f"""
                    INSERT INTO settings (id, {', '.join(SETTINGS_COLUMNS)}, updated_at)
                    VALUES (1, {', '.join('?' for _ in SETTINGS_COLUMNS)}, ?)
                    ON CONFLICT(id) DO UPDATE SET {updates}, updated_at = excluded.updated_at
                    """,
                    (*values, now_ms()),
                )

        counts = {
            "projects": len(bundle.projects),
            "tasks": len(bundle.tasks),
            "subtasks": subtask_count,
        }
        logger.info("backup_imported", **counts)
        return counts

    # Row helpers

    async def _require_row(self, conn: Connection, table: str, row_id: str, label: str) -> None:
        cursor = await conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (row_id,))
        if await cursor.fetchone() is None:
            raise ConstraintViolationError(f"{label} not found: {row_id}")

    async def _fetch_task(self, conn: Connection, task_id: str) -> Task | None:
        cursor = await conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
        row = await cursor.fetchone()
        return self._row_to_task(row) if row else None

    async def _attach_subtasks(self, conn: Connection, tasks: list[Task]) -> None:
        """Load subtasks for all given tasks with a single query."""
        if not tasks:
            return
        by_id = {task.id: task for task in tasks}
        placeholders = ", ".join("?" for _ in by_id)
        cursor = await conn.execute(
            f"""
            SELECT * FROM subtasks
            WHERE task_id IN ({placeholders})
            ORDER BY sort_order ASC, created_at ASC
            """,
            tuple(by_id),
        )
        for row in await cursor.fetchall():
            subtask = self._row_to_subtask(row)
            by_id[subtask.task_id].subtasks.append(subtask)

    async def _insert_task(self, conn: Connection, task: Task, upsert: bool = False) -> None:
        columns = ", ".join(TASK_COLUMNS)
        placeholders = ", ".join("?" for _ in TASK_COLUMNS)
        query = f"INSERT INTO tasks ({columns}) VALUES ({placeholders})"
        if upsert:
            updates = ", ".join(f"{col} = excluded.{col}" for col in TASK_COLUMNS[1:])
            query += f" ON CONFLICT(id) DO UPDATE SET {updates}"

        await conn.execute(
            query,
            (
                task.id,
                task.project_id,
                task.title,
                task.description,
                task.priority.to_db(),
                task.status.to_db(),
                task.created_at,
                task.completed_at,
                task.deadline,
                task.estimated_minutes,
                task.actual_minutes,
                json.dumps(task.tags),
                task.remind_at,
                task.reminded_at,
                task.repeat_mode.value if task.repeat_mode else None,
                task.repeat_days_mask,
                int(task.is_archived),
                task.sort_order,
            ),
        )

    async def _upsert_subtask(self, conn: Connection, subtask: Subtask) -> None:
        await conn.execute(
            """
            INSERT INTO subtasks (id, task_id, title, completed, sort_order, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                task_id = excluded.task_id,
                title = excluded.title,
                completed = excluded.completed,
                sort_order = excluded.sort_order,
                created_at = excluded.created_at
            """,
            (
                subtask.id,
                subtask.task_id,
                subtask.title,
                int(subtask.completed),
                subtask.sort_order,
                subtask.created_at,
            ),
        )

    def _row_to_project(self, row: aiosqlite.Row) -> Project:
        row_dict = dict(row)
        return Project(
            id=row_dict["id"],
            name=row_dict["name"],
            color=row_dict["color"],
            priority=Priority.from_db(row_dict["priority"]),
            created_at=row_dict["created_at"],
        )

    def _row_to_task(self, row: aiosqlite.Row) -> Task:
        """Convert database row to Task model."""
        row_dict = dict(row)
        return Task(
            id=row_dict["id"],
            project_id=row_dict["project_id"],
            title=row_dict["title"],
            description=row_dict["description"],
            priority=Priority.from_db(row_dict["priority"]),
            status=Status.from_db(row_dict["status"]),
            created_at=row_dict["created_at"],
            completed_at=row_dict["completed_at"],
            deadline=row_dict["deadline"],
            estimated_minutes=row_dict["estimated_minutes"],
            actual_minutes=row_dict["actual_minutes"] or 0,
            tags=_decode_tags(row_dict["tags"], row_dict["id"]),
            remind_at=row_dict.get("remind_at"),
            reminded_at=row_dict.get("reminded_at"),
            repeat_mode=RepeatMode.parse(row_dict.get("repeat_mode")),
            repeat_days_mask=row_dict.get("repeat_days_mask"),
            is_archived=bool(row_dict.get("is_archived", 0)),
            sort_order=row_dict.get("sort_order") or 0,
        )

    def _row_to_subtask(self, row: aiosqlite.Row) -> Subtask:
        row_dict = dict(row)
        return Subtask(
            id=row_dict["id"],
            task_id=row_dict["task_id"],
            title=row_dict["title"],
            completed=bool(row_dict["completed"]),
            sort_order=row_dict["sort_order"],
            created_at=row_dict["created_at"],
        )

    def _row_to_session(self, row: aiosqlite.Row) -> FocusSession:
        row_dict = dict(row)
        return FocusSession(
            id=row_dict["id"],
            task_id=row_dict["task_id"],
            duration_minutes=row_dict["duration_minutes"],
            completed=bool(row_dict["completed"]),
            started_at=row_dict["started_at"],
            ended_at=row_dict["ended_at"],
        )


def normalize_imported_task(task: Task, exported_at: int) -> Task:
    """Restore task lifecycle invariants on a row read from a backup.

    A done task without a completion time is stamped with the export time, an
    open task loses any completion time, done tasks carry no pending reminder
    and a pending reminder clears reminded_at.

    Raises:
        ConstraintViolationError: Custom repeat rule without a valid mask
    """
    updates: dict[str, Any] = {
        "repeat_days_mask": validate_repeat(task.repeat_mode, task.repeat_days_mask)
    }
    if task.status == Status.DONE:
        updates["remind_at"] = None
        if task.completed_at is None:
            updates["completed_at"] = exported_at
    else:
        updates["completed_at"] = None
    if updates.get("remind_at", task.remind_at) is not None:
        updates["reminded_at"] = None
    return task.model_copy(update=updates)


def _clean_tags(tags: Iterable[str]) -> list[str]:
    return [tag.strip() for tag in tags if tag and tag.strip()]


def _decode_tags(raw: str | None, task_id: str) -> list[str]:
    """Decode the stored JSON tag list; corrupt values read as no tags."""
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("malformed_tags", task_id=task_id)
        return []
    if not isinstance(value, list):
        logger.warning("malformed_tags", task_id=task_id)
        return []
    return [tag for tag in value if isinstance(tag, str)]
