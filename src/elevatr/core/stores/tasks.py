"""
Task store: the flat task list of the signed-in user.

Same load-once and optimistic-write contract as the sprint store. Tasks
added locally get a ``temp-`` id and live only in memory.
"""

import logging
import time
from typing import Any

from elevatr.core.models import Task, TaskState, utcnow
from elevatr.core.storage import StorageRouter

from .base import ObservableStore
from .optimistic import Revisions, run_optimistic

logger = logging.getLogger(__name__)

TEMP_TASK_PREFIX = "temp-"


class TaskStore(ObservableStore):
    """
    Cache of the flat task list.

    ``updating`` holds the id of the task whose toggle is in flight so a UI
    can show a per-row spinner.
    """

    def __init__(self, router: StorageRouter) -> None:
        super().__init__()
        self.router = router
        self.tasks: list[Task] = []
        self.loading = False
        self.updating: str | None = None
        self.error: str | None = None
        self.user_id: str | None = None
        self._revisions = Revisions()

    def get_cached(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    async def load_all(self, user_id: str) -> None:
        """Load the task list unless it is already cached."""
        if self.tasks:
            return

        generation = self._generation
        self.loading = True
        self.error = None
        self._notify()
        try:
            tasks = await self.router.for_user(user_id).get_tasks_by_user(user_id)
        except Exception as e:
            if not self._is_current(generation):
                return
            logger.error("Error loading tasks for %s: %s", user_id, e)
            self.loading = False
            self.error = "Failed to load tasks"
            self._notify()
            return

        if not self._is_current(generation):
            logger.debug("Dropping tasks of %s loaded before a reset", user_id)
            return
        self.tasks = list(tasks)
        self.user_id = user_id
        self.loading = False
        self._notify()

    async def update_optimistic(self, task_id: str, updates: dict[str, Any]) -> None:
        """
        Merge ``updates`` into the cached task, then persist.

        ``updated_at`` is always stamped; ``completed_at`` is set the first
        time a task becomes completed.

        Raises:
            Exception: The backend failure, after reverting and setting ``error``
        """
        previous = self.get_cached(task_id)
        if previous is None:
            logger.error("Task %s not found for update", task_id)
            return

        now = utcnow()
        merged: dict[str, Any] = {**updates, "updated_at": now}
        if updates.get("status") in (TaskState.COMPLETED, TaskState.COMPLETED.value) and (
            previous.completed_at is None
        ):
            merged.setdefault("completed_at", now)
        updated = previous.with_updates(merged)

        def apply() -> None:
            self._replace(task_id, updated)
            self._notify()

        generation = self._generation

        def rollback(latest: bool) -> None:
            if not self._is_current(generation):
                return
            if self.get_cached(task_id) is updated:
                self._replace(task_id, previous)
            else:
                logger.warning(
                    "Task %s changed since the failed update, not reverting", task_id
                )
            self.error = "Failed to update task"
            self._notify()

        if task_id.startswith(TEMP_TASK_PREFIX):
            apply()
            return

        user_id = self.user_id
        if user_id is None:
            logger.error("Cannot persist task %s without a user id", task_id)
            return

        try:
            await run_optimistic(
                self._revisions,
                task_id,
                apply,
                lambda: self.router.for_user(user_id).update_task(user_id, task_id, updates),
                rollback,
            )
        except Exception as e:
            logger.error("Error updating task %s: %s", task_id, e)
            raise

    async def toggle_status(self, task_id: str, completed: bool) -> None:
        """Mark a task completed or active; ``updating`` is cleared either way."""
        self.set_updating(task_id)
        try:
            await self.update_optimistic(
                task_id,
                {
                    "status": TaskState.COMPLETED if completed else TaskState.ACTIVE,
                    "completed_at": utcnow() if completed else None,
                },
            )
        finally:
            self.set_updating(None)

    async def add(self, task_data: dict[str, Any]) -> str:
        """Add a task to the in-memory list under a temporary id."""
        stamp = int(time.time() * 1000)
        while self.get_cached(f"{TEMP_TASK_PREFIX}{stamp}") is not None:
            stamp += 1
        task_id = f"{TEMP_TASK_PREFIX}{stamp}"
        now = utcnow()
        task = Task.model_validate({**task_data, "id": task_id, "created_at": now, "updated_at": now})
        self.tasks = [*self.tasks, task]
        self.error = None
        self._notify()
        return task_id

    def _replace(self, task_id: str, task: Task) -> None:
        self.tasks = [task if t.id == task_id else t for t in self.tasks]

    def set_updating(self, task_id: str | None) -> None:
        self.updating = task_id
        self._notify()

    def clear_error(self) -> None:
        self.error = None
        self._notify()

    def clear_all(self) -> None:
        """Reset to the initial empty state (logout hook)."""
        self.tasks = []
        self.loading = False
        self.updating = None
        self.error = None
        self.user_id = None
        self._revisions.clear()
        self._invalidate()
        self._notify()
