# src/tududi/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Order matters: older rows and clients send the status as an integer index.
    """

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    ARCHIVED = "archived"
    WAITING = "waiting"

    @classmethod
    def from_db(cls, raw: str | int | None) -> TaskStatus:
        if raw is None or raw == "":
            return cls.NOT_STARTED
        if isinstance(raw, int):
            members = list(cls)
            return members[raw] if 0 <= raw < len(members) else cls.NOT_STARTED
        try:
            return cls(raw)
        except ValueError:
            return cls.NOT_STARTED

    @property
    def is_complete(self) -> bool:
        return self in (TaskStatus.DONE, TaskStatus.ARCHIVED)


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def coerce(cls, raw: str | int | None) -> Priority:
        """Accept a name or an integer index (0 low, 1 medium, 2 high); default medium."""
        if isinstance(raw, int):
            members = list(cls)
            return members[raw] if 0 <= raw < len(members) else cls.MEDIUM
        if not raw:
            return cls.MEDIUM
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.MEDIUM


class RecurrenceType(StrEnum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    MONTHLY_WEEKDAY = "monthly_weekday"
    MONTHLY_LAST_DAY = "monthly_last_day"

    @classmethod
    def from_db(cls, raw: str | None) -> RecurrenceType:
        if not raw:
            return cls.NONE
        try:
            return cls(raw)
        except ValueError:
            return cls.NONE


@dataclass(slots=True)
class Task:
    id: int
    uuid: str
    user_id: int
    name: str
    status: TaskStatus = TaskStatus.NOT_STARTED
    priority: Priority = Priority.MEDIUM
    note: str | None = None
    due_date: date | None = None
    today: bool = False
    project_id: int | None = None
    tags: list[str] = field(default_factory=list)

    recurrence_type: RecurrenceType = RecurrenceType.NONE
    recurrence_interval: int = 1
    recurrence_end_date: date | None = None
    recurrence_weekday: int | None = None  # 0 = Monday
    recurrence_month_day: int | None = None
    recurrence_week_of_month: int | None = None  # 5 = last
    completion_based: bool = False
    recurring_parent_id: int | None = None

    created_at: float = 0.0
    updated_at: float = 0.0
    completed_at: float | None = None

    @property
    def is_generated_instance(self) -> bool:
        return self.recurring_parent_id is not None

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_type != RecurrenceType.NONE


@dataclass(slots=True)
class TaskPayload:
    """
    What the editing layer hands to the persistence layer.

    Everything except ``name`` is optional. ``tags`` is passed through as-is,
    duplicates included. ``update_parent_recurrence`` is an instruction for the
    save operation and is never stored on the child.
    """

    name: str
    id: int | None = None
    status: TaskStatus | None = None
    priority: Priority | None = None
    note: str | None = None
    due_date: date | None = None
    today: bool | None = None
    project_id: int | None = None
    tags: list[str] | None = None

    recurrence_type: RecurrenceType | None = None
    recurrence_interval: int | None = None
    recurrence_end_date: date | None = None
    recurrence_weekday: int | None = None
    recurrence_month_day: int | None = None
    recurrence_week_of_month: int | None = None
    completion_based: bool | None = None
    recurring_parent_id: int | None = None

    update_parent_recurrence: bool = False

    @classmethod
    def from_task(cls, task: Task) -> TaskPayload:
        return cls(
            id=task.id,
            name=task.name,
            status=task.status,
            priority=task.priority,
            note=task.note,
            due_date=task.due_date,
            today=task.today,
            project_id=task.project_id,
            tags=list(task.tags),
            recurrence_type=task.recurrence_type,
            recurrence_interval=task.recurrence_interval,
            recurrence_end_date=task.recurrence_end_date,
            recurrence_weekday=task.recurrence_weekday,
            recurrence_month_day=task.recurrence_month_day,
            recurrence_week_of_month=task.recurrence_week_of_month,
            completion_based=task.completion_based,
            recurring_parent_id=task.recurring_parent_id,
        )


@dataclass(slots=True)
class Tag:
    id: int
    name: str


@dataclass(slots=True)
class Area:
    id: int
    user_id: int
    name: str
    description: str | None = None


@dataclass(slots=True)
class Project:
    id: int
    user_id: int
    name: str
    description: str | None = None
    active: bool = True
    pin_to_sidebar: bool = False
    area_id: int | None = None
    tags: list[str] = field(default_factory=list)
    priority: Priority | None = None
    due_date: date | None = None


@dataclass(slots=True)
class Note:
    id: int
    user_id: int
    title: str
    content: str = ""
    project_id: int | None = None
    tags: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class User:
    id: int
    email: str
