"""Domain models for FocusFlow."""

from focusflow.domain.models import (
    AppSettings,
    BackupBundle,
    CompletionDay,
    DbHealth,
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

__all__ = [
    "AppSettings",
    "BackupBundle",
    "CompletionDay",
    "DbHealth",
    "FocusSession",
    "NewTask",
    "Priority",
    "Project",
    "RepeatMode",
    "Status",
    "Subtask",
    "Task",
    "UserStats",
]
