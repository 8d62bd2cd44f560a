"""Operation facade over the task store.

Maps each named tracker operation onto the repository or the stats
aggregator, parses the loosely typed caller arguments (priority and status
text, repeat rules) and publishes a ``DataChanged`` event after every
successful write.
"""

from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from focusflow.domain.models import (
    AppSettings,
    BackupBundle,
    CompletionDay,
    FocusSession,
    NewTask,
    Priority,
    Project,
    RepeatMode,
    Status,
    Subtask,
    Task,
    UserStats,
)
from focusflow.infrastructure.database import Database
from focusflow.infrastructure.exceptions import ConstraintViolationError
from focusflow.infrastructure.logger import get_logger
from focusflow.services.events import DataChanged, EventBus
from focusflow.services.stats_service import StatsAggregator

logger = get_logger(__name__)


def parse_backup(data: str | bytes) -> BackupBundle:
    """Parse a backup bundle from JSON text.

    Raises:
        ConstraintViolationError: Not valid JSON or missing required sections
    """
    try:
        return BackupBundle.model_validate_json(data)
    except ValidationError as e:
        raise ConstraintViolationError(
            f"Invalid backup file: {e.error_count()} problem(s), first: {e.errors()[0]['msg']}",
            remediation="Use a file produced by 'focusflow export'",
        ) from e


class TrackerService:
    """Named operation surface of the tracker.

    Usage:
        db = Database(Path("focusflow.db"))
        await db.initialize()
        bus = EventBus()
        service = TrackerService(db, bus)

        project = await service.add_project("Home")
        task = await service.add_task({"title": "Water plants", "project_id": project.id})
        await service.update_task_status(task.id, "done")
    """

    def __init__(
        self,
        database: Database,
        event_bus: EventBus,
        stats: StatsAggregator | None = None,
    ) -> None:
        self._db = database
        self._bus = event_bus
        self._stats = stats or StatsAggregator(database, database.tz)

    def _changed(self, entity: str, action: str, entity_id: str | None = None) -> None:
        self._bus.publish(DataChanged(entity=entity, action=action, id=entity_id))

    # Projects

    async def add_project(
        self,
        name: str,
        color: str = "#6366f1",
        priority: str | Priority = Priority.NORMAL,
        project_id: str | None = None,
    ) -> Project:
        project = await self._db.add_project(
            name, color=color, priority=Priority.parse(priority), project_id=project_id
        )
        self._changed("project", "created", project.id)
        return project

    async def edit_project(self, project_id: str, name: str) -> None:
        await self._db.update_project_name(project_id, name)
        self._changed("project", "updated", project_id)

    async def update_project_priority(self, project_id: str, priority: str | Priority) -> None:
        await self._db.update_project_priority(project_id, Priority.parse(priority))
        self._changed("project", "updated", project_id)

    async def delete_project(self, project_id: str) -> None:
        await self._db.delete_project(project_id)
        self._changed("project", "deleted", project_id)

    async def get_projects(self) -> list[Project]:
        return await self._db.get_projects()

    # Tasks

    async def add_task(self, payload: NewTask | dict[str, Any]) -> Task:
        """Create a task from a NewTask or a plain dict."""
        if isinstance(payload, dict):
            try:
                payload = NewTask.model_validate(payload)
            except ValidationError as e:
                raise ConstraintViolationError(f"Invalid task: {e.errors()[0]['msg']}") from e
        task = await self._db.add_task(payload)
        self._changed("task", "created", task.id)
        return task

    async def edit_task_title(self, task_id: str, title: str) -> None:
        await self._db.update_task_title(task_id, title)
        self._changed("task", "updated", task_id)

    async def edit_task_description(self, task_id: str, description: str | None) -> None:
        await self._db.update_task_description(task_id, description)
        self._changed("task", "updated", task_id)

    async def update_task_priority(self, task_id: str, priority: str | Priority) -> None:
        await self._db.update_task_priority(task_id, Priority.parse(priority))
        self._changed("task", "updated", task_id)

    async def update_task_deadline(self, task_id: str, deadline: int | None) -> None:
        await self._db.update_task_deadline(task_id, deadline)
        self._changed("task", "updated", task_id)

    async def update_task_tags(self, task_id: str, tags: Iterable[str]) -> None:
        await self._db.update_task_tags(task_id, tags)
        self._changed("task", "updated", task_id)

    async def update_task_repeat(
        self, task_id: str, repeat_mode: str | RepeatMode | None, repeat_days_mask: int | None
    ) -> None:
        await self._db.update_task_repeat(
            task_id, RepeatMode.parse(repeat_mode), repeat_days_mask
        )
        self._changed("task", "updated", task_id)

    async def update_task_status(self, task_id: str, status: str | Status) -> Task | None:
        """Change status; returns the next occurrence of a repeating task, if any."""
        successor = await self._db.update_task_status(task_id, Status.parse(status))
        self._changed("task", "updated", task_id)
        if successor is not None:
            self._changed("task", "created", successor.id)
        return successor

    async def archive_task(self, task_id: str) -> None:
        await self._db.archive_task(task_id)
        self._changed("task", "archived", task_id)

    async def unarchive_task(self, task_id: str) -> None:
        await self._db.unarchive_task(task_id)
        self._changed("task", "unarchived", task_id)

    async def delete_task(self, task_id: str) -> None:
        await self._db.delete_task(task_id)
        self._changed("task", "deleted", task_id)

    async def reorder_tasks(self, task_ids: list[str]) -> None:
        await self._db.reorder_tasks(task_ids)
        self._changed("task", "reordered")

    async def get_tasks(
        self,
        limit: int | None = None,
        status: str | Status | None = None,
        project_id: str | None = None,
        archived: bool | None = False,
        manual_order: bool = False,
    ) -> list[Task]:
        return await self._db.get_tasks(
            limit=limit,
            status=Status.parse(status) if status is not None else None,
            project_id=project_id,
            archived=archived,
            manual_order=manual_order,
        )

    # Subtasks

    async def add_subtask(self, task_id: str, title: str) -> Subtask:
        subtask = await self._db.add_subtask(task_id, title)
        self._changed("subtask", "created", subtask.id)
        return subtask

    async def toggle_subtask(self, subtask_id: str) -> Subtask | None:
        subtask = await self._db.toggle_subtask(subtask_id)
        self._changed("subtask", "updated", subtask_id)
        return subtask

    async def delete_subtask(self, subtask_id: str) -> None:
        await self._db.delete_subtask(subtask_id)
        self._changed("subtask", "deleted", subtask_id)

    async def reorder_subtasks(self, subtask_ids: list[str]) -> None:
        await self._db.reorder_subtasks(subtask_ids)
        self._changed("subtask", "reordered")

    async def get_subtasks(self, task_id: str) -> list[Subtask]:
        return await self._db.get_subtasks(task_id)

    # Focus sessions

    async def start_focus_session(self, task_id: str | None = None) -> FocusSession:
        session = await self._db.start_focus_session(task_id)
        self._changed("focus_session", "started", session.id)
        return session

    async def finish_focus_session(
        self, session_id: str, duration_minutes: int, completed: bool = True
    ) -> None:
        await self._db.finish_focus_session(session_id, duration_minutes, completed)
        self._changed("focus_session", "finished", session_id)

    async def cancel_focus_session(self, session_id: str, duration_minutes: int = 0) -> None:
        await self._db.finish_focus_session(session_id, duration_minutes, completed=False)
        self._changed("focus_session", "cancelled", session_id)

    # Settings

    async def get_settings(self) -> AppSettings:
        return await self._db.get_settings()

    async def save_settings(self, settings: AppSettings | dict[str, Any]) -> None:
        if isinstance(settings, dict):
            try:
                settings = AppSettings.model_validate(settings)
            except ValidationError as e:
                raise ConstraintViolationError(f"Invalid settings: {e.errors()[0]['msg']}") from e
        await self._db.save_settings(settings)
        self._changed("settings", "updated")

    # Reminders

    async def set_task_remind_at(self, task_id: str, remind_at: int | None) -> None:
        await self._db.set_task_remind_at(task_id, remind_at)
        self._changed("task", "updated", task_id)

    async def snooze_task(self, task_id: str, minutes: int) -> int:
        remind_at = await self._db.snooze_task(task_id, minutes)
        self._changed("task", "snoozed", task_id)
        return remind_at

    async def get_due_reminders(self, now: int | None = None) -> list[Task]:
        return await self._db.get_due_reminders(now)

    async def mark_reminded(self, task_ids: list[str], now: int | None = None) -> int:
        marked = await self._db.mark_reminded(task_ids, now)
        if marked:
            self._changed("task", "reminded")
        return marked

    # Stats

    async def get_stats(self) -> UserStats:
        return await self._stats.get_stats()

    async def get_completion_series(self, days: int) -> list[CompletionDay]:
        return await self._stats.get_completion_series(days)

    # Bulk

    async def export_data(self) -> BackupBundle:
        return await self._db.export_data()

    async def import_data(self, bundle: BackupBundle | str | bytes) -> dict[str, int]:
        if not isinstance(bundle, BackupBundle):
            bundle = parse_backup(bundle)
        counts = await self._db.import_data(bundle)
        self._changed("all", "imported")
        return counts
