"""
User progress store: task statuses and journal entries of one sprint.

Holds at most one UserProgress record, the one for the (user, sprint) pair
last loaded. Task status and journal writes are optimistic; a failed write
restores the whole record as it was before the write, unless the cache has
moved on since. When another write to the same record has landed, only the
failed write's own status or entry is undone, and only while it is still
the value in the cache. When a different record has been loaded, nothing
is reverted.

Guest and local-device users never see a missing record: when the backend
has none, an empty one is created and persisted. Cloud users get None.
"""

import logging
from collections.abc import Callable

from elevatr.core.identity import UserKind
from elevatr.core.models import (
    JournalEntry,
    Sprint,
    TaskStatus,
    TaskType,
    UserProgress,
    task_key,
    utcnow,
)
from elevatr.core.progress_math import recompute
from elevatr.core.storage import StorageRouter

from .base import ObservableStore
from .optimistic import Revisions, run_optimistic

logger = logging.getLogger(__name__)

SprintLookup = Callable[[str], Sprint | None]

_SYNTHESIZING_KINDS = (UserKind.GUEST, UserKind.LOCAL)


def _record_key(user_id: str, sprint_id: str) -> str:
    return f"{user_id}/{sprint_id}"


class UserProgressStore(ObservableStore):
    """
    Cache of the current sprint's progress record.

    Args:
        router: Storage router
        sprint_lookup: Resolves a sprint id to the cached sprint, so stats
            are computed over the sprint's real task count
    """

    def __init__(self, router: StorageRouter, sprint_lookup: SprintLookup | None = None) -> None:
        super().__init__()
        self.router = router
        self.sprint_lookup = sprint_lookup
        self.user_progress: UserProgress | None = None
        self.loading = False
        self.updating: str | None = None
        self.error: str | None = None
        self._revisions = Revisions()

    def _holds(self, user_id: str, sprint_id: str) -> bool:
        progress = self.user_progress
        return (
            progress is not None
            and progress.user_id == user_id
            and progress.sprint_id == sprint_id
        )

    def _recompute(self, progress: UserProgress) -> UserProgress:
        sprint = self.sprint_lookup(progress.sprint_id) if self.sprint_lookup else None
        return recompute(progress, sprint)

    async def load(self, user_id: str, sprint_id: str) -> None:
        """Load the progress of (user, sprint) unless it is already cached."""
        if self._holds(user_id, sprint_id):
            return

        generation = self._generation
        self.loading = True
        self.error = None
        self._notify()
        try:
            backend = self.router.for_user(user_id)
            progress = await backend.get_progress(user_id, sprint_id)
            if progress is None and self.router.kind_of(user_id) in _SYNTHESIZING_KINDS:
                progress = UserProgress.empty(user_id, sprint_id)
                await backend.save_progress(progress)
                logger.debug("Created empty progress for %s on sprint %s", user_id, sprint_id)
        except Exception as e:
            if not self._is_current(generation):
                return
            logger.error("Error loading user progress for %s/%s: %s", user_id, sprint_id, e)
            self.loading = False
            self.error = "Failed to load user progress"
            self._notify()
            return

        if not self._is_current(generation):
            logger.debug("Dropping progress of %s/%s loaded before a reset", user_id, sprint_id)
            return
        self.user_progress = progress
        self.loading = False
        self._notify()

    async def update_task_status(
        self,
        user_id: str,
        sprint_id: str,
        day_id: str,
        task_type: TaskType,
        task_index: int,
        completed: bool,
    ) -> None:
        """
        Mark one task slot completed or not.

        ``updating`` holds the slot's key while the write is in flight.

        Raises:
            Exception: The backend failure, after reverting and setting ``error``
        """
        key = task_key(day_id, task_type, task_index)
        self.set_updating(key)
        try:
            current = self.user_progress
            if current is None or not self._holds(user_id, sprint_id):
                logger.warning("No cached progress for %s/%s, ignoring task update", user_id, sprint_id)
                return

            status = TaskStatus.build(day_id, TaskType(task_type), task_index, completed)
            previous_status = current.find_task_status(key)

            applied = self._recompute(current.upsert_task_status(status))
            generation = self._generation

            def apply() -> None:
                self.user_progress = applied
                self._notify()

            def rollback(latest: bool) -> None:
                if not self._is_current(generation):
                    return
                now = self.user_progress
                if now is None or not self._holds(user_id, sprint_id):
                    logger.warning(
                        "Progress of %s/%s no longer cached, not reverting", user_id, sprint_id
                    )
                elif latest and now is applied:
                    self.user_progress = current
                elif now.find_task_status(key) is status:
                    if previous_status is None:
                        restored = now.remove_task_status(key)
                    else:
                        restored = now.upsert_task_status(previous_status)
                    self.user_progress = self._recompute(restored)
                else:
                    logger.warning("Skipping stale revert of task status %s", key)
                self.error = "Failed to update task status"
                self._notify()

            await run_optimistic(
                self._revisions,
                _record_key(user_id, sprint_id),
                apply,
                lambda: self.router.for_user(user_id).update_task_status(
                    user_id, sprint_id, status
                ),
                rollback,
            )
        except Exception as e:
            logger.error("Error updating task status %s: %s", key, e)
            raise
        finally:
            if self.updating == key:
                self.set_updating(None)

    async def update_journal(
        self, user_id: str, sprint_id: str, day_id: str, content: str
    ) -> None:
        """
        Upsert the journal entry of a day.

        The entry keeps its id and created_at when one exists for the day;
        updated_at is always bumped.

        Raises:
            Exception: The backend failure, after reverting and setting ``error``
        """
        current = self.user_progress
        if current is None or not self._holds(user_id, sprint_id):
            logger.warning("No cached progress for %s/%s, ignoring journal update", user_id, sprint_id)
            return

        existing = current.find_journal_entry(day_id)
        now = utcnow()
        entry = JournalEntry(
            id=existing.id if existing else f"{sprint_id}_{day_id}",
            user_id=user_id,
            day_id=day_id,
            content=content,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )

        applied = self._recompute(current.upsert_journal_entry(entry))
        generation = self._generation

        def apply() -> None:
            self.user_progress = applied
            self._notify()

        def rollback(latest: bool) -> None:
            if not self._is_current(generation):
                return
            cached = self.user_progress
            if cached is None or not self._holds(user_id, sprint_id):
                logger.warning(
                    "Progress of %s/%s no longer cached, not reverting", user_id, sprint_id
                )
            elif latest and cached is applied:
                self.user_progress = current
            elif cached.find_journal_entry(day_id) is entry:
                if existing is None:
                    restored = cached.remove_journal_entry(day_id)
                else:
                    restored = cached.upsert_journal_entry(existing)
                self.user_progress = self._recompute(restored)
            else:
                logger.warning("Skipping stale revert of journal entry for day %s", day_id)
            self.error = "Failed to update journal"
            self._notify()

        try:
            await run_optimistic(
                self._revisions,
                _record_key(user_id, sprint_id),
                apply,
                lambda: self.router.for_user(user_id).update_journal_entry(
                    user_id, sprint_id, entry
                ),
                rollback,
            )
        except Exception as e:
            logger.error("Error updating journal for day %s: %s", day_id, e)
            raise

    def is_updating(self, day_id: str, task_type: TaskType, task_index: int) -> bool:
        return self.updating == task_key(day_id, task_type, task_index)

    def set_updating(self, key: str | None) -> None:
        self.updating = key
        self._notify()

    def clear_error(self) -> None:
        self.error = None
        self._notify()

    def clear(self) -> None:
        """Reset to the initial empty state (logout hook)."""
        self.user_progress = None
        self.loading = False
        self.updating = None
        self.error = None
        self._revisions.clear()
        self._invalidate()
        self._notify()
