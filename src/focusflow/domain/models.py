"""Core domain models for FocusFlow."""

import time
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def now_ms() -> int:
    """Current instant as integer milliseconds since the Unix epoch."""
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid4())


class Priority(str, Enum):
    """Task/project priority.

    Stored as an integer (low=0, normal=1, high=2), exchanged as lowercase text.
    """

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    def to_db(self) -> int:
        return _PRIORITY_CODES[self]

    @classmethod
    def from_db(cls, value: int | None) -> "Priority":
        """Decode a stored integer; unknown codes fall back to NORMAL."""
        for member, code in _PRIORITY_CODES.items():
            if code == value:
                return member
        return cls.NORMAL

    @classmethod
    def parse(cls, value: "str | Priority | None") -> "Priority":
        """Parse caller text case-insensitively; unknown text is NORMAL."""
        if isinstance(value, Priority):
            return value
        text = (value or "").strip().lower()
        if text == "high":
            return cls.HIGH
        if text == "low":
            return cls.LOW
        return cls.NORMAL


_PRIORITY_CODES = {Priority.LOW: 0, Priority.NORMAL: 1, Priority.HIGH: 2}


class Status(str, Enum):
    """Task lifecycle states (todo=0, doing=1, done=2 in storage)."""

    TODO = "todo"
    DOING = "doing"
    DONE = "done"

    def to_db(self) -> int:
        return _STATUS_CODES[self]

    @classmethod
    def from_db(cls, value: int | None) -> "Status":
        """Decode a stored integer; unknown codes fall back to TODO."""
        for member, code in _STATUS_CODES.items():
            if code == value:
                return member
        return cls.TODO

    @classmethod
    def parse(cls, value: "str | Status | None") -> "Status":
        """Parse caller text case-insensitively; unknown text is TODO."""
        if isinstance(value, Status):
            return value
        text = (value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.TODO


_STATUS_CODES = {Status.TODO: 0, Status.DOING: 1, Status.DONE: 2}


class RepeatMode(str, Enum):
    """Recurrence rule of a task."""

    DAILY = "daily"
    WEEKDAYS = "weekdays"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: "str | RepeatMode | None") -> "RepeatMode | None":
        """Parse stored or caller text; empty or unknown text means no repeat."""
        if value is None or isinstance(value, RepeatMode):
            return value
        text = value.strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return None


# Weekday bits, Monday = bit 0 ... Sunday = bit 6
MONDAY = 1
SUNDAY = 1 << 6
WEEKDAYS_MASK = 0b0011111
ALL_DAYS_MASK = 0b1111111


def _coerce_priority(v: Any) -> Any:
    if isinstance(v, int) and not isinstance(v, bool):
        return Priority.from_db(v)
    if isinstance(v, str):
        return Priority.parse(v)
    return v


def _coerce_status(v: Any) -> Any:
    if isinstance(v, int) and not isinstance(v, bool):
        return Status.from_db(v)
    if isinstance(v, str):
        return Status.parse(v)
    return v


class Project(BaseModel):
    """A named group of tasks."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=new_id)
    name: str
    color: str = "#6366f1"
    priority: Priority = Priority.NORMAL
    created_at: int = Field(default_factory=now_ms)

    @field_validator("priority", mode="before")
    @classmethod
    def validate_priority(cls, v: Any) -> Any:
        return _coerce_priority(v)


class Subtask(BaseModel):
    """Checklist item belonging to a task."""

    id: str = Field(default_factory=new_id)
    task_id: str
    title: str
    completed: bool = False
    sort_order: int = 0
    created_at: int = Field(default_factory=now_ms)


class Task(BaseModel):
    """A unit of work tracked by the user.

    Attributes:
        id: Opaque unique identifier
        project_id: Owning project (weak reference, may dangle to None)
        completed_at: Set iff status is DONE
        tags: Ordered list of labels, stored as a JSON array
        remind_at: Pending reminder instant
        reminded_at: When the last reminder fired
        repeat_mode: Recurrence rule, None for one-off tasks
        repeat_days_mask: Weekday bitmask for CUSTOM recurrence
        sort_order: Manual ordering key
        subtasks: Checklist, ordered by sort_order then created_at
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=new_id)
    project_id: str | None = None
    title: str
    description: str | None = None
    priority: Priority = Priority.NORMAL
    status: Status = Status.TODO
    created_at: int = Field(default_factory=now_ms)
    completed_at: int | None = None
    deadline: int | None = None
    estimated_minutes: int | None = None
    actual_minutes: int = 0
    tags: list[str] = Field(default_factory=list)
    remind_at: int | None = None
    reminded_at: int | None = None
    repeat_mode: RepeatMode | None = None
    repeat_days_mask: int | None = None
    is_archived: bool = False
    sort_order: int = 0
    subtasks: list[Subtask] = Field(default_factory=list)

    @field_validator("priority", mode="before")
    @classmethod
    def validate_priority(cls, v: Any) -> Any:
        return _coerce_priority(v)

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: Any) -> Any:
        return _coerce_status(v)

    @field_validator("repeat_mode", mode="before")
    @classmethod
    def validate_repeat_mode(cls, v: Any) -> Any:
        if isinstance(v, str):
            return RepeatMode.parse(v)
        return v


class NewTask(BaseModel):
    """Creation payload for a task; server fields are filled on insert."""

    id: str | None = None
    project_id: str | None = None
    title: str
    description: str | None = None
    priority: Priority = Priority.NORMAL
    deadline: int | None = None
    estimated_minutes: int | None = Field(default=None, ge=0)
    tags: list[str] = Field(default_factory=list)
    remind_at: int | None = None
    repeat_mode: RepeatMode | None = None
    repeat_days_mask: int | None = None

    @field_validator("priority", mode="before")
    @classmethod
    def validate_priority(cls, v: Any) -> Any:
        return _coerce_priority(v)

    @field_validator("repeat_mode", mode="before")
    @classmethod
    def validate_repeat_mode(cls, v: Any) -> Any:
        if isinstance(v, str):
            return RepeatMode.parse(v)
        return v


class FocusSession(BaseModel):
    """A timed focus (pomodoro) session. Append-only."""

    id: str = Field(default_factory=new_id)
    task_id: str | None = None
    duration_minutes: int = 0
    completed: bool = False
    started_at: int = Field(default_factory=now_ms)
    ended_at: int | None = None


class AppSettings(BaseModel):
    """User preferences, persisted as the singleton settings row."""

    pomodoro_length: int = Field(default=25, ge=1)
    short_break_length: int = Field(default=5, ge=1)
    long_break_length: int = Field(default=15, ge=1)
    pomodoros_until_long_break: int = Field(default=4, ge=1)
    sound_enabled: bool = True
    auto_start_breaks: bool = False
    auto_start_pomodoros: bool = False
    global_shortcuts_enabled: bool = True
    start_minimized: bool = False
    close_to_tray: bool = True
    reminder_lead_minutes: int = Field(default=30, ge=0)


class UserStats(BaseModel):
    """Aggregate productivity statistics."""

    total_tasks: int = 0
    completed_tasks: int = 0
    completed_today: int = 0
    completed_week: int = 0
    tasks_today: int = 0
    tasks_week: int = 0
    total_focus_minutes: int = 0
    current_streak: int = 0
    best_streak: int = 0
    level: int = 1
    points: int = 0


class CompletionDay(BaseModel):
    """Completions on one local calendar day (YYYY-MM-DD)."""

    day: str
    count: int


BACKUP_FORMAT_VERSION = 1


class BackupBundle(BaseModel):
    """Full export of user data."""

    version: int = BACKUP_FORMAT_VERSION
    exported_at: int = Field(default_factory=now_ms)
    projects: list[Project]
    tasks: list[Task]
    settings: AppSettings | None = None


class DbHealth(BaseModel):
    """Store diagnostics."""

    db_path: str
    tables: list[str]
    has_tasks: bool
    has_projects: bool
    schema_version: int
