"""
Local-device storage backend.

Backs users who opted into device-only storage (``local_...`` ids) and
offline copies of cloud accounts (``cached_...`` ids). Every user gets one
sprint-list document and one progress document per sprint in a
JsonDocumentStore:

    elevatr_local_sprints_{user_id}              -> [sprint, ...]
    elevatr_local_progress_{user_id}_{sprint_id} -> progress

File I/O is blocking, so every contract method runs its work through
``asyncio.to_thread``. Read-modify-write updates hold a per-backend lock
from load to save.
"""

import asyncio
import logging
import threading
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from elevatr.core.config import StorageConfig
from elevatr.core.identity import LOCAL_PREFIX, UserKind, generate_id
from elevatr.core.models import (
    JournalEntry,
    Sprint,
    SprintDraft,
    SprintStatus,
    Task,
    TaskStatus,
    UserProgress,
    utcnow,
)
from elevatr.core.progress_math import derive_tasks, recompute, status_from_task_update

from .backend import register_backend
from .documents import JsonDocumentStore
from .errors import (
    InvalidInputError,
    StorageCorruptedError,
    validate_sprint_id,
    validate_sprint_title,
    validate_updates,
    validate_user_id,
)

logger = logging.getLogger(__name__)

SPRINTS_KEY_PREFIX = "elevatr_local_sprints_"
PROGRESS_KEY_PREFIX = "elevatr_local_progress_"


def sprints_key(user_id: str) -> str:
    return f"{SPRINTS_KEY_PREFIX}{user_id}"


def progress_key(user_id: str, sprint_id: str) -> str:
    return f"{PROGRESS_KEY_PREFIX}{user_id}_{sprint_id}"


def pick_active_sprint(sprints: list[Sprint]) -> Sprint | None:
    """The newest sprint with status active, else the newest sprint overall."""
    if not sprints:
        return None
    newest_first = sorted(sprints, key=lambda s: s.created_at, reverse=True)
    for sprint in newest_first:
        if sprint.status == SprintStatus.ACTIVE:
            return sprint
    return newest_first[0]


@register_backend(UserKind.LOCAL)
class LocalBackend:
    """
    Storage backend over device-local JSON documents.

    Example:
        >>> backend = LocalBackend(Path("~/.local/share/elevatr").expanduser())
        >>> sprint_id = await backend.create_sprint(user_id, draft)
        >>> await backend.get_active_sprint(user_id)
    """

    def __init__(self, data_dir: Path, documents: JsonDocumentStore | None = None) -> None:
        """
        Initialize the local backend.

        Args:
            data_dir: Directory holding the documents
            documents: Explicit document store (overrides data_dir)
        """
        self.data_dir = Path(data_dir)
        self.documents = documents or JsonDocumentStore(self.data_dir)
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, storage: StorageConfig) -> "LocalBackend":
        return cls(storage.data_dir)

    @property
    def backend_name(self) -> str:
        return "local"

    # ------------------------------------------------------------------
    # Document helpers (blocking)
    # ------------------------------------------------------------------

    def _load_sprints(self, user_id: str) -> list[Sprint]:
        raw = self.documents.get(sprints_key(user_id), default=[])
        if not isinstance(raw, list):
            raise StorageCorruptedError(f"Sprint list for {user_id} is not a JSON array")
        try:
            return [Sprint.model_validate(item) for item in raw]
        except ValidationError as e:
            raise StorageCorruptedError(f"Sprint list for {user_id} is invalid: {e}") from e

    def _save_sprints(self, user_id: str, sprints: list[Sprint]) -> None:
        self.documents.set(sprints_key(user_id), [s.to_document() for s in sprints])

    def _load_progress(self, user_id: str, sprint_id: str) -> UserProgress | None:
        raw = self.documents.get(progress_key(user_id, sprint_id))
        if raw is None:
            return None
        try:
            return UserProgress.model_validate(raw)
        except ValidationError as e:
            raise StorageCorruptedError(
                f"Progress of {user_id} on sprint {sprint_id} is invalid: {e}"
            ) from e

    def _save_progress(self, progress: UserProgress) -> None:
        self.documents.set(
            progress_key(progress.user_id, progress.sprint_id), progress.to_document()
        )

    def _find_sprint(self, sprint_id: str, user_id: str | None) -> Sprint | None:
        if user_id is not None:
            candidates = [user_id]
        else:
            candidates = [
                key[len(SPRINTS_KEY_PREFIX):] for key in self.documents.keys(SPRINTS_KEY_PREFIX)
            ]
        for owner in candidates:
            for sprint in self._load_sprints(owner):
                if sprint.id == sprint_id:
                    return sprint
        return None

    # ------------------------------------------------------------------
    # Sprints
    # ------------------------------------------------------------------

    def _get_sprints_by_user(self, user_id: str) -> list[Sprint]:
        validate_user_id(user_id)
        sprints = self._load_sprints(user_id)
        return sorted(sprints, key=lambda s: s.created_at, reverse=True)

    def _create_sprint(self, user_id: str, draft: SprintDraft) -> str:
        validate_user_id(user_id)
        validate_sprint_title(draft.title)

        now = utcnow()
        sprint = Sprint.from_draft(draft, generate_id(LOCAL_PREFIX)).model_copy(
            update={"user_id": user_id, "created_at": now, "updated_at": now}
        )
        with self._lock:
            sprints = self._load_sprints(user_id)
            sprints.append(sprint)
            self._save_sprints(user_id, sprints)
        logger.debug("Created local sprint %s for %s", sprint.id, user_id)
        return sprint.id

    def _update_sprint(self, user_id: str, sprint_id: str, updates: dict[str, Any]) -> None:
        validate_user_id(user_id)
        validate_sprint_id(sprint_id)
        validate_updates(updates)

        with self._lock:
            sprints = self._load_sprints(user_id)
            for i, sprint in enumerate(sprints):
                if sprint.id == sprint_id:
                    sprints[i] = sprint.with_updates({**updates, "updated_at": utcnow()})
                    self._save_sprints(user_id, sprints)
                    return
        logger.warning("Local sprint %s not found for %s, update ignored", sprint_id, user_id)

    def _put_sprint(self, sprint: Sprint) -> None:
        validate_user_id(sprint.user_id)
        validate_sprint_id(sprint.id)
        with self._lock:
            sprints = [s for s in self._load_sprints(sprint.user_id) if s.id != sprint.id]
            sprints.append(sprint)
            self._save_sprints(sprint.user_id, sprints)

    async def get_sprints_by_user(self, user_id: str) -> list[Sprint]:
        return await asyncio.to_thread(self._get_sprints_by_user, user_id)

    async def get_active_sprint(self, user_id: str) -> Sprint | None:
        sprints = await asyncio.to_thread(self._get_sprints_by_user, user_id)
        return pick_active_sprint(sprints)

    async def get_sprint(self, sprint_id: str, user_id: str | None = None) -> Sprint | None:
        validate_sprint_id(sprint_id)
        return await asyncio.to_thread(self._find_sprint, sprint_id, user_id)

    async def create_sprint(self, user_id: str, draft: SprintDraft) -> str:
        return await asyncio.to_thread(self._create_sprint, user_id, draft)

    async def update_sprint(self, user_id: str, sprint_id: str, updates: dict[str, Any]) -> None:
        await asyncio.to_thread(self._update_sprint, user_id, sprint_id, updates)

    async def put_sprint(self, sprint: Sprint) -> None:
        await asyncio.to_thread(self._put_sprint, sprint)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _get_tasks_by_user(self, user_id: str) -> list[Task]:
        validate_user_id(user_id)
        sprints = self._load_sprints(user_id)
        progresses = [
            progress
            for sprint in sprints
            if (progress := self._load_progress(user_id, sprint.id)) is not None
        ]
        return derive_tasks(sprints, progresses)

    async def get_tasks_by_user(self, user_id: str) -> list[Task]:
        return await asyncio.to_thread(self._get_tasks_by_user, user_id)

    async def update_task(self, user_id: str, task_id: str, updates: dict[str, Any]) -> None:
        validate_updates(updates)
        try:
            sprint_id, status = status_from_task_update(task_id, updates)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        await self.update_task_status(user_id, sprint_id, status)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _get_progress(self, user_id: str, sprint_id: str) -> UserProgress | None:
        validate_user_id(user_id)
        validate_sprint_id(sprint_id)
        return self._load_progress(user_id, sprint_id)

    def _update_task_status(self, user_id: str, sprint_id: str, status: TaskStatus) -> None:
        validate_user_id(user_id)
        validate_sprint_id(sprint_id)

        status = status.model_copy(update={"updated_at": utcnow()})
        with self._lock:
            progress = self._load_progress(user_id, sprint_id) or UserProgress.empty(
                user_id, sprint_id
            )
            progress = progress.upsert_task_status(status)
            self._save_progress(recompute(progress, self._find_sprint(sprint_id, user_id)))

    def _update_journal_entry(self, user_id: str, sprint_id: str, entry: JournalEntry) -> None:
        validate_user_id(user_id)
        validate_sprint_id(sprint_id)

        entry = entry.model_copy(update={"updated_at": utcnow()})
        with self._lock:
            progress = self._load_progress(user_id, sprint_id) or UserProgress.empty(
                user_id, sprint_id
            )
            progress = progress.upsert_journal_entry(entry)
            self._save_progress(recompute(progress, self._find_sprint(sprint_id, user_id)))

    async def get_progress(self, user_id: str, sprint_id: str) -> UserProgress | None:
        return await asyncio.to_thread(self._get_progress, user_id, sprint_id)

    async def save_progress(self, progress: UserProgress) -> None:
        await asyncio.to_thread(self._save_progress, progress)

    async def update_task_status(self, user_id: str, sprint_id: str, status: TaskStatus) -> None:
        await asyncio.to_thread(self._update_task_status, user_id, sprint_id, status)

    async def update_journal_entry(
        self, user_id: str, sprint_id: str, entry: JournalEntry
    ) -> None:
        await asyncio.to_thread(self._update_journal_entry, user_id, sprint_id, entry)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def clear_user(self, user_id: str) -> None:
        """Delete every document of a user (sprints and all progress)."""
        with self._lock:
            for sprint in self._load_sprints(user_id):
                self.documents.delete(progress_key(user_id, sprint.id))
            self.documents.delete(sprints_key(user_id))
