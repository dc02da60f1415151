"""
Data models for sprints, tasks and per-sprint user progress.

These models define the documents stored by every storage backend (cloud,
local-device and guest). The persisted form is camelCase JSON, produced with
``model_dump(by_alias=True, mode="json")`` so the same document can be read
back by any backend.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class ElevatrModel(BaseModel):
    """Base model with camelCase aliases for persisted documents."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_document(self) -> dict[str, Any]:
        """Serialize to the JSON document shape shared by all backends."""
        return self.model_dump(by_alias=True, mode="json")


# ==============================================================================
# Sprints
# ==============================================================================


class SprintDuration(IntEnum):
    """Allowed sprint lengths in days."""

    SHORT = 15
    LONG = 30


class SprintStatus(str, Enum):
    """Sprint lifecycle states. At most one sprint per user is ACTIVE."""

    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"


class CoreTask(ElevatrModel):
    """A core task slot inside a sprint day."""

    category: str
    description: str = ""


class Day(ElevatrModel):
    """
    One day of a sprint plan.

    ``day`` is the day number as a string ("1", "2", ...) and doubles as the
    ``day_id`` referenced by task statuses and journal entries.
    """

    day: str
    date: str = ""
    core_tasks: list[CoreTask] = Field(default_factory=list)
    special_tasks: list[str] = Field(default_factory=list)

    @field_validator("day", mode="before")
    @classmethod
    def coerce_day(cls, v: Any) -> str:
        """Day numbers arrive as ints from older documents."""
        return str(v)

    @property
    def task_count(self) -> int:
        return len(self.core_tasks) + len(self.special_tasks)


class SprintDraft(ElevatrModel):
    """
    Sprint data supplied by the user before an id has been assigned.

    Example:
        >>> draft = SprintDraft(
        ...     user_id="local_1700000000000_abc123xyz",
        ...     title="Backend interview prep",
        ...     duration=SprintDuration.SHORT,
        ...     status=SprintStatus.ACTIVE,
        ... )
        >>> draft.status
        <SprintStatus.ACTIVE: 'active'>
    """

    user_id: str
    title: str = Field(..., min_length=1)
    description: str = ""
    duration: SprintDuration = SprintDuration.LONG
    start_date: str = ""
    end_date: str = ""
    status: SprintStatus = SprintStatus.PLANNING
    days: list[Day] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def total_tasks(self) -> int:
        """Number of task slots across all days (core + special)."""
        return sum(day.task_count for day in self.days)

    def find_day(self, day_id: str) -> Day | None:
        for day in self.days:
            if day.day == day_id:
                return day
        return None


class Sprint(SprintDraft):
    """A persisted sprint."""

    id: str

    @classmethod
    def from_draft(cls, draft: SprintDraft, sprint_id: str) -> Sprint:
        return cls(id=sprint_id, **draft.model_dump())

    def with_updates(self, updates: dict[str, Any]) -> Sprint:
        """Return a validated copy with ``updates`` (snake_case keys) merged in."""
        return type(self).model_validate({**self.model_dump(), **updates})

    @property
    def is_active(self) -> bool:
        return self.status == SprintStatus.ACTIVE


# ==============================================================================
# Flat task list
# ==============================================================================


class TaskState(str, Enum):
    """Status of an entry in the flat task list."""

    ACTIVE = "active"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskType(str, Enum):
    """Which task list of a sprint day a slot belongs to."""

    CORE = "core"
    SPECIAL = "special"


class Task(ElevatrModel):
    """
    An entry of the secondary, flat task list.

    Tasks optionally point back at a sprint day slot through
    ``sprint_id``/``day_id``/``task_type``/``task_index``.
    """

    id: str
    title: str
    description: str | None = None
    status: TaskState = TaskState.ACTIVE
    priority: TaskPriority = TaskPriority.MEDIUM
    category: str | None = None
    sprint_id: str | None = None
    day_id: str | None = None
    task_type: TaskType | None = None
    task_index: int | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    due_date: str | None = None

    def with_updates(self, updates: dict[str, Any]) -> Task:
        return type(self).model_validate({**self.model_dump(), **updates})

    @property
    def is_completed(self) -> bool:
        return self.status == TaskState.COMPLETED


# ==============================================================================
# Progress
# ==============================================================================


def task_key(day_id: str, task_type: TaskType | str, task_index: int) -> str:
    """Composite key of a task slot: ``"{day_id}-{task_type}-{task_index}"``."""
    type_value = task_type.value if isinstance(task_type, TaskType) else task_type
    return f"{day_id}-{type_value}-{task_index}"


class TaskStatus(ElevatrModel):
    """
    Completion state of one task slot of one sprint day.

    Identity is the composite (day_id, task_type, task_index); there is at
    most one TaskStatus per key inside a UserProgress record.
    """

    day_id: str
    task_type: TaskType
    task_index: int = Field(..., ge=0)
    completed: bool = False
    completed_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def build(
        cls, day_id: str, task_type: TaskType, task_index: int, completed: bool
    ) -> TaskStatus:
        now = utcnow()
        return cls(
            day_id=day_id,
            task_type=task_type,
            task_index=task_index,
            completed=completed,
            completed_at=now if completed else None,
            updated_at=now,
        )

    @property
    def key(self) -> str:
        return task_key(self.day_id, self.task_type, self.task_index)


class JournalEntry(ElevatrModel):
    """Journal text for one sprint day. One entry per day_id."""

    id: str
    user_id: str
    day_id: str
    content: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Streaks(ElevatrModel):
    current_task_streak: int = 0
    longest_task_streak: int = 0
    current_journal_streak: int = 0
    longest_journal_streak: int = 0


class ProgressStats(ElevatrModel):
    total_tasks_completed: int = 0
    total_days_completed: int = 0
    completion_percentage: int = 0


class UserProgress(ElevatrModel):
    """
    All progress of one user on one sprint.

    Identity is (user_id, sprint_id). Stats and streaks are derived values
    recomputed from ``task_statuses``/``journal_entries``; they are never
    mutated independently.
    """

    user_id: str
    sprint_id: str
    task_statuses: list[TaskStatus] = Field(default_factory=list)
    journal_entries: list[JournalEntry] = Field(default_factory=list)
    streaks: Streaks = Field(default_factory=Streaks)
    stats: ProgressStats = Field(default_factory=ProgressStats)

    @classmethod
    def empty(cls, user_id: str, sprint_id: str) -> UserProgress:
        """Zeroed record used when a device-bound user has no progress yet."""
        return cls(user_id=user_id, sprint_id=sprint_id)

    def find_task_status(self, key: str) -> TaskStatus | None:
        for status in self.task_statuses:
            if status.key == key:
                return status
        return None

    def find_journal_entry(self, day_id: str) -> JournalEntry | None:
        for entry in self.journal_entries:
            if entry.day_id == day_id:
                return entry
        return None

    def upsert_task_status(self, status: TaskStatus) -> UserProgress:
        """Return a copy with ``status`` replacing the same-key entry or appended."""
        statuses = list(self.task_statuses)
        for i, existing in enumerate(statuses):
            if existing.key == status.key:
                statuses[i] = status
                break
        else:
            statuses.append(status)
        return self.model_copy(update={"task_statuses": statuses})

    def remove_task_status(self, key: str) -> UserProgress:
        statuses = [s for s in self.task_statuses if s.key != key]
        return self.model_copy(update={"task_statuses": statuses})

    def upsert_journal_entry(self, entry: JournalEntry) -> UserProgress:
        """Return a copy with ``entry`` replacing the entry for its day or appended."""
        entries = list(self.journal_entries)
        for i, existing in enumerate(entries):
            if existing.day_id == entry.day_id:
                entries[i] = entry
                break
        else:
            entries.append(entry)
        return self.model_copy(update={"journal_entries": entries})

    def remove_journal_entry(self, day_id: str) -> UserProgress:
        entries = [e for e in self.journal_entries if e.day_id != day_id]
        return self.model_copy(update={"journal_entries": entries})

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.task_statuses if s.completed)


# Day is "complete" once this share of its tasks is done
DAY_COMPLETION_THRESHOLD = 0.8


def day_completion_target(day: Day) -> int:
    return math.ceil(day.task_count * DAY_COMPLETION_THRESHOLD)


__all__ = [
    "CoreTask",
    "DAY_COMPLETION_THRESHOLD",
    "Day",
    "ElevatrModel",
    "JournalEntry",
    "ProgressStats",
    "Sprint",
    "SprintDraft",
    "SprintDuration",
    "SprintStatus",
    "Streaks",
    "Task",
    "TaskPriority",
    "TaskState",
    "TaskStatus",
    "TaskType",
    "UserProgress",
    "day_completion_target",
    "task_key",
    "utcnow",
]
