"""
Guest storage backend over an embedded SQLite database.

Guest sessions (``guest_...`` ids) are unauthenticated and keep everything
on the device. Each guest owns exactly one row holding a snapshot of all of
their sprints and progress records:

    guest_data(guest_id PRIMARY KEY, sprints JSON, user_progress JSON,
               created_at, updated_at)

Every write is a read-modify-write of that snapshot, serialized by a
per-backend lock so overlapping writes never drop each other's changes. A
guest without a row reads as an empty snapshot.
"""

import asyncio
import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError

from elevatr.core.config import StorageConfig
from elevatr.core.identity import GUEST_PREFIX, UserKind, generate_id
from elevatr.core.models import (
    ElevatrModel,
    JournalEntry,
    Sprint,
    SprintDraft,
    Task,
    TaskStatus,
    UserProgress,
    utcnow,
)
from elevatr.core.progress_math import derive_tasks, recompute, status_from_task_update

from .backend import register_backend
from .errors import (
    InvalidInputError,
    StorageCorruptedError,
    validate_sprint_id,
    validate_sprint_title,
    validate_updates,
    validate_user_id,
)
from .local import pick_active_sprint

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS guest_data (
    guest_id TEXT PRIMARY KEY,
    sprints TEXT NOT NULL DEFAULT '[]',
    user_progress TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class GuestSnapshot(ElevatrModel):
    """Everything stored for one guest."""

    guest_id: str
    sprints: list[Sprint] = Field(default_factory=list)
    user_progress: list[UserProgress] = Field(default_factory=list)

    def find_progress(self, sprint_id: str) -> UserProgress | None:
        for progress in self.user_progress:
            if progress.sprint_id == sprint_id:
                return progress
        return None

    def find_sprint(self, sprint_id: str) -> Sprint | None:
        for sprint in self.sprints:
            if sprint.id == sprint_id:
                return sprint
        return None

    def put_progress(self, progress: UserProgress) -> None:
        for i, existing in enumerate(self.user_progress):
            if existing.user_id == progress.user_id and existing.sprint_id == progress.sprint_id:
                self.user_progress[i] = progress
                return
        self.user_progress.append(progress)


def configure_connection(conn: sqlite3.Connection) -> None:
    """Apply WAL mode and a dict row factory, then ensure the schema exists."""
    conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row
    conn.execute(SCHEMA)


@register_backend(UserKind.GUEST)
class GuestBackend:
    """
    Storage backend for guest sessions.

    Example:
        >>> backend = GuestBackend(Path("~/.local/share/elevatr/guest.db").expanduser())
        >>> snapshot = backend.load_snapshot("guest_1700000000000_k3j9x0a1b")
        >>> snapshot.sprints
        []
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, storage: StorageConfig) -> "GuestBackend":
        return cls(storage.resolved_guest_db_path)

    @property
    def backend_name(self) -> str:
        return "guest"

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        try:
            configure_connection(conn)
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Snapshot access (blocking)
    # ------------------------------------------------------------------

    def load_snapshot(self, guest_id: str) -> GuestSnapshot:
        """
        Load a guest's snapshot.

        Returns:
            The stored snapshot, or an empty one when the guest has no row

        Raises:
            StorageCorruptedError: If the stored JSON cannot be parsed or
                does not describe valid sprints and progress
        """
        validate_user_id(guest_id)
        with self._connect() as conn:
            row = conn.execute(
                "SELECT sprints, user_progress FROM guest_data WHERE guest_id = ?",
                (guest_id,),
            ).fetchone()

        if row is None:
            return GuestSnapshot(guest_id=guest_id)

        try:
            return GuestSnapshot(
                guest_id=guest_id,
                sprints=json.loads(row["sprints"]),
                user_progress=json.loads(row["user_progress"]),
            )
        except (json.JSONDecodeError, ValidationError) as e:
            raise StorageCorruptedError(f"Guest data for {guest_id} is corrupted: {e}") from e

    def save_snapshot(self, snapshot: GuestSnapshot) -> None:
        now = utcnow().isoformat()
        sprints = json.dumps([s.to_document() for s in snapshot.sprints])
        progress = json.dumps([p.to_document() for p in snapshot.user_progress])
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO guest_data (guest_id, sprints, user_progress, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(guest_id) DO UPDATE SET
                    sprints = excluded.sprints,
                    user_progress = excluded.user_progress,
                    updated_at = excluded.updated_at
                """,
                (snapshot.guest_id, sprints, progress, now, now),
            )

    def delete_snapshot(self, guest_id: str) -> bool:
        with self._lock, self._connect() as conn:
            cursor = conn.execute("DELETE FROM guest_data WHERE guest_id = ?", (guest_id,))
            return cursor.rowcount > 0

    def clear_user(self, user_id: str) -> None:
        """Delete the guest's snapshot row."""
        if self.delete_snapshot(user_id):
            logger.debug("Deleted guest data of %s", user_id)

    def has_data(self, guest_id: str) -> bool:
        snapshot = self.load_snapshot(guest_id)
        return bool(snapshot.sprints or snapshot.user_progress)

    # ------------------------------------------------------------------
    # Blocking contract implementations
    # ------------------------------------------------------------------

    def _get_sprints_by_user(self, user_id: str) -> list[Sprint]:
        snapshot = self.load_snapshot(user_id)
        return sorted(snapshot.sprints, key=lambda s: s.created_at, reverse=True)

    def _get_sprint(self, sprint_id: str, user_id: str | None) -> Sprint | None:
        if user_id is not None:
            return self.load_snapshot(user_id).find_sprint(sprint_id)

        with self._connect() as conn:
            guest_ids = [row["guest_id"] for row in conn.execute("SELECT guest_id FROM guest_data")]
        for guest_id in guest_ids:
            sprint = self.load_snapshot(guest_id).find_sprint(sprint_id)
            if sprint is not None:
                return sprint
        return None

    def _create_sprint(self, user_id: str, draft: SprintDraft) -> str:
        validate_sprint_title(draft.title)
        now = utcnow()
        sprint = Sprint.from_draft(draft, generate_id(GUEST_PREFIX)).model_copy(
            update={"user_id": user_id, "created_at": now, "updated_at": now}
        )
        with self._lock:
            snapshot = self.load_snapshot(user_id)
            snapshot.sprints.append(sprint)
            self.save_snapshot(snapshot)
        return sprint.id

    def _update_sprint(self, user_id: str, sprint_id: str, updates: dict[str, Any]) -> None:
        validate_sprint_id(sprint_id)
        validate_updates(updates)
        with self._lock:
            snapshot = self.load_snapshot(user_id)
            for i, sprint in enumerate(snapshot.sprints):
                if sprint.id == sprint_id:
                    snapshot.sprints[i] = sprint.with_updates({**updates, "updated_at": utcnow()})
                    self.save_snapshot(snapshot)
                    return
        logger.warning("Guest sprint %s not found for %s, update ignored", sprint_id, user_id)

    def _put_sprint(self, sprint: Sprint) -> None:
        validate_sprint_id(sprint.id)
        with self._lock:
            snapshot = self.load_snapshot(sprint.user_id)
            snapshot.sprints = [s for s in snapshot.sprints if s.id != sprint.id]
            snapshot.sprints.append(sprint)
            self.save_snapshot(snapshot)

    def _get_tasks_by_user(self, user_id: str) -> list[Task]:
        snapshot = self.load_snapshot(user_id)
        return derive_tasks(snapshot.sprints, snapshot.user_progress)

    def _get_progress(self, user_id: str, sprint_id: str) -> UserProgress | None:
        validate_sprint_id(sprint_id)
        return self.load_snapshot(user_id).find_progress(sprint_id)

    def _save_progress(self, progress: UserProgress) -> None:
        with self._lock:
            snapshot = self.load_snapshot(progress.user_id)
            snapshot.put_progress(progress)
            self.save_snapshot(snapshot)

    def _update_task_status(self, user_id: str, sprint_id: str, status: TaskStatus) -> None:
        validate_sprint_id(sprint_id)
        status = status.model_copy(update={"updated_at": utcnow()})
        with self._lock:
            snapshot = self.load_snapshot(user_id)
            progress = snapshot.find_progress(sprint_id) or UserProgress.empty(user_id, sprint_id)
            progress = progress.upsert_task_status(status)
            snapshot.put_progress(recompute(progress, snapshot.find_sprint(sprint_id)))
            self.save_snapshot(snapshot)

    def _update_journal_entry(self, user_id: str, sprint_id: str, entry: JournalEntry) -> None:
        validate_sprint_id(sprint_id)
        entry = entry.model_copy(update={"updated_at": utcnow()})
        with self._lock:
            snapshot = self.load_snapshot(user_id)
            progress = snapshot.find_progress(sprint_id) or UserProgress.empty(user_id, sprint_id)
            progress = progress.upsert_journal_entry(entry)
            snapshot.put_progress(recompute(progress, snapshot.find_sprint(sprint_id)))
            self.save_snapshot(snapshot)

    # ------------------------------------------------------------------
    # StorageBackend
    # ------------------------------------------------------------------

    async def get_sprints_by_user(self, user_id: str) -> list[Sprint]:
        return await asyncio.to_thread(self._get_sprints_by_user, user_id)

    async def get_active_sprint(self, user_id: str) -> Sprint | None:
        sprints = await asyncio.to_thread(self._get_sprints_by_user, user_id)
        return pick_active_sprint(sprints)

    async def get_sprint(self, sprint_id: str, user_id: str | None = None) -> Sprint | None:
        validate_sprint_id(sprint_id)
        return await asyncio.to_thread(self._get_sprint, sprint_id, user_id)

    async def create_sprint(self, user_id: str, draft: SprintDraft) -> str:
        return await asyncio.to_thread(self._create_sprint, user_id, draft)

    async def update_sprint(self, user_id: str, sprint_id: str, updates: dict[str, Any]) -> None:
        await asyncio.to_thread(self._update_sprint, user_id, sprint_id, updates)

    async def put_sprint(self, sprint: Sprint) -> None:
        await asyncio.to_thread(self._put_sprint, sprint)

    async def get_tasks_by_user(self, user_id: str) -> list[Task]:
        return await asyncio.to_thread(self._get_tasks_by_user, user_id)

    async def update_task(self, user_id: str, task_id: str, updates: dict[str, Any]) -> None:
        validate_updates(updates)
        try:
            sprint_id, status = status_from_task_update(task_id, updates)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        await self.update_task_status(user_id, sprint_id, status)

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
