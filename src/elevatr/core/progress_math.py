"""
Derived progress values: stats, streaks and the flat task projection.

Stats are always recomputed from the task statuses of a progress record.
The completion percentage is taken over the sprint's real number of task
slots (core + special across all days). When the sprint is not known the
denominator falls back to the number of tracked statuses.
"""

from __future__ import annotations

from collections.abc import Iterable

from elevatr.core.models import (
    JournalEntry,
    ProgressStats,
    Sprint,
    Streaks,
    Task,
    TaskPriority,
    TaskState,
    TaskStatus,
    TaskType,
    UserProgress,
    day_completion_target,
)


def _day_sort_key(day_id: str) -> tuple[int, str]:
    return (int(day_id), "") if day_id.isdigit() else (10**9, day_id)


def _day_order(
    statuses: Iterable[TaskStatus],
    entries: Iterable[JournalEntry],
    sprint: Sprint | None,
) -> list[str]:
    if sprint is not None and sprint.days:
        return [day.day for day in sprint.days]
    seen = {s.day_id for s in statuses} | {e.day_id for e in entries}
    return sorted(seen, key=_day_sort_key)


def completed_days(statuses: list[TaskStatus], sprint: Sprint | None) -> set[str]:
    """
    Day ids that count as completed.

    With a sprint, a day is completed once ceil(80%) of its task slots are
    done. Without one, a day is completed when every tracked status for it
    is completed.
    """
    done: dict[str, int] = {}
    tracked: dict[str, int] = {}
    for status in statuses:
        tracked[status.day_id] = tracked.get(status.day_id, 0) + 1
        if status.completed:
            done[status.day_id] = done.get(status.day_id, 0) + 1

    if sprint is None:
        return {day_id for day_id, count in tracked.items() if done.get(day_id, 0) == count}

    result: set[str] = set()
    for day in sprint.days:
        if day.task_count == 0:
            continue
        if done.get(day.day, 0) >= day_completion_target(day):
            result.add(day.day)
    return result


def compute_stats(statuses: list[TaskStatus], sprint: Sprint | None) -> ProgressStats:
    completed = sum(1 for s in statuses if s.completed)
    if sprint is not None and sprint.total_tasks > 0:
        total = sprint.total_tasks
    else:
        total = len(statuses)
    percentage = round(completed / total * 100) if total else 0
    return ProgressStats(
        total_tasks_completed=completed,
        total_days_completed=len(completed_days(statuses, sprint)),
        completion_percentage=min(percentage, 100),
    )


def _runs(order: list[str], hits: set[str], last_active: str | None) -> tuple[int, int]:
    """Return (current, longest) run lengths of consecutive ``hits`` in ``order``."""
    longest = 0
    run = 0
    current = 0
    for day_id in order:
        run = run + 1 if day_id in hits else 0
        longest = max(longest, run)
        if day_id == last_active:
            current = run
    return current, longest


def compute_streaks(
    statuses: list[TaskStatus],
    entries: list[JournalEntry],
    sprint: Sprint | None,
) -> Streaks:
    """
    Task and journal streaks in sprint day order.

    The current task streak ends at the last day with any recorded task
    activity; the current journal streak ends at the last day with a
    non-blank entry.
    """
    order = _day_order(statuses, entries, sprint)
    task_days = completed_days(statuses, sprint)
    journal_days = {e.day_id for e in entries if e.content.strip()}

    active_days = {s.day_id for s in statuses}
    last_task_day = next((d for d in reversed(order) if d in active_days), None)
    last_journal_day = next((d for d in reversed(order) if d in journal_days), None)

    current_task, longest_task = _runs(order, task_days, last_task_day)
    current_journal, longest_journal = _runs(order, journal_days, last_journal_day)
    return Streaks(
        current_task_streak=current_task,
        longest_task_streak=longest_task,
        current_journal_streak=current_journal,
        longest_journal_streak=longest_journal,
    )


def recompute(progress: UserProgress, sprint: Sprint | None) -> UserProgress:
    """Return ``progress`` with stats and streaks recomputed."""
    return progress.model_copy(
        update={
            "stats": compute_stats(progress.task_statuses, sprint),
            "streaks": compute_streaks(progress.task_statuses, progress.journal_entries, sprint),
        }
    )


# ==============================================================================
# Flat task projection
# ==============================================================================


def derived_task_id(sprint_id: str, status: TaskStatus) -> str:
    return f"{sprint_id}-{status.key}"


def parse_task_id(task_id: str) -> tuple[str, str, TaskType, int]:
    """
    Split a derived task id into (sprint_id, day_id, task_type, task_index).

    Sprint ids may themselves contain dashes, so the id is split from the
    right.

    Raises:
        ValueError: If the id is not a derived task id
    """
    parts = task_id.rsplit("-", 3)
    if len(parts) != 4 or not all(parts):
        raise ValueError(f"Invalid task ID format: {task_id}")
    sprint_id, day_id, task_type, task_index = parts
    try:
        return sprint_id, day_id, TaskType(task_type), int(task_index)
    except ValueError as e:
        raise ValueError(f"Invalid task ID format: {task_id}") from e


def derive_tasks(sprints: list[Sprint], progresses: list[UserProgress]) -> list[Task]:
    """
    Project recorded task statuses onto the flat task list.

    Each status whose sprint day still exists becomes a Task titled after
    its slot (the core task category, or the special task text). Result is
    sorted newest update first.
    """
    by_id = {sprint.id: sprint for sprint in sprints}
    tasks: list[Task] = []

    for progress in progresses:
        sprint = by_id.get(progress.sprint_id)
        if sprint is None:
            continue
        for status in progress.task_statuses:
            day = sprint.find_day(status.day_id)
            if day is None:
                continue

            description = None
            if status.task_type == TaskType.CORE and status.task_index < len(day.core_tasks):
                core = day.core_tasks[status.task_index]
                title = core.category
                description = core.description or None
            elif status.task_type == TaskType.SPECIAL and status.task_index < len(
                day.special_tasks
            ):
                title = day.special_tasks[status.task_index]
            else:
                title = f"{status.task_type.value} task {status.task_index + 1}"

            tasks.append(
                Task(
                    id=derived_task_id(sprint.id, status),
                    title=title,
                    description=description,
                    status=TaskState.COMPLETED if status.completed else TaskState.ACTIVE,
                    priority=TaskPriority.MEDIUM,
                    category="Core" if status.task_type == TaskType.CORE else "Special",
                    sprint_id=sprint.id,
                    day_id=status.day_id,
                    task_type=status.task_type,
                    task_index=status.task_index,
                    created_at=sprint.created_at,
                    updated_at=status.completed_at or sprint.created_at,
                    completed_at=status.completed_at,
                    due_date=day.date or None,
                )
            )

    tasks.sort(key=lambda t: t.updated_at, reverse=True)
    return tasks


def status_from_task_update(
    task_id: str, updates: dict[str, object]
) -> tuple[str, TaskStatus]:
    """
    Translate a flat-task update into the task status write it stands for.

    Returns:
        (sprint_id, TaskStatus)
    """
    sprint_id, day_id, task_type, task_index = parse_task_id(task_id)
    completed = updates.get("status") in (TaskState.COMPLETED, TaskState.COMPLETED.value)
    status = TaskStatus.build(day_id, task_type, task_index, completed)
    completed_at = updates.get("completed_at")
    if completed and completed_at is not None:
        status = status.model_copy(update={"completed_at": completed_at})
    return sprint_id, status
