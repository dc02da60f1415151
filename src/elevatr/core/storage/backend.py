"""
Storage backend protocol, registry and per-user router.

This module defines the StorageBackend protocol that the three storage
variants (cloud, local-device, guest) implement. Stores never pick a
backend themselves: they ask the StorageRouter for the backend matching the
user id on every call.
"""

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from elevatr.core.config import StorageConfig
from elevatr.core.identity import UserKind, classify
from elevatr.core.models import JournalEntry, Sprint, SprintDraft, Task, TaskStatus, UserProgress

from .errors import StorageError


@runtime_checkable
class StorageBackend(Protocol):
    """
    Protocol for storage backend implementations.

    All backends must implement the same per-entity contract so the stores
    can treat them interchangeably:

    - Sprints: list, active, by id, create, partial update, whole-sprint upsert
    - Tasks: list, partial update
    - UserProgress: read, save, task status upsert, journal entry upsert

    All methods are coroutines; backends with blocking I/O run it off the
    event loop.
    """

    @classmethod
    def from_config(cls, storage: StorageConfig) -> "StorageBackend":
        """Build the backend from the storage section of the configuration."""
        ...

    @property
    def backend_name(self) -> str:
        """Backend name (e.g. 'cloud', 'local', 'guest')."""
        ...

    async def get_sprints_by_user(self, user_id: str) -> list[Sprint]:
        """
        List all sprints owned by a user, newest first.

        Args:
            user_id: Owner id

        Returns:
            List of sprints (empty when the user has none)
        """
        ...

    async def get_active_sprint(self, user_id: str) -> Sprint | None:
        """
        Get the sprint the user is currently working on.

        Returns:
            The active sprint, else the most recently created one, else None
        """
        ...

    async def get_sprint(self, sprint_id: str, user_id: str | None = None) -> Sprint | None:
        """
        Get a sprint by id.

        Args:
            sprint_id: Sprint identifier
            user_id: Owner id, when known (lets device-bound stores narrow
                the lookup)

        Returns:
            Sprint if found, None otherwise
        """
        ...

    async def create_sprint(self, user_id: str, draft: SprintDraft) -> str:
        """
        Persist a new sprint.

        Returns:
            The generated sprint id

        Raises:
            InvalidInputError: If the draft is invalid
            StorageError: If the write fails
        """
        ...

    async def update_sprint(self, user_id: str, sprint_id: str, updates: dict[str, Any]) -> None:
        """
        Merge a partial update into a stored sprint.

        Raises:
            StorageError: If the write fails
        """
        ...

    async def put_sprint(self, sprint: Sprint) -> None:
        """
        Store a complete sprint under its own id and owner, replacing any
        stored sprint with the same id. Used to copy data between backends.

        Raises:
            StorageError: If the write fails
        """
        ...

    async def get_tasks_by_user(self, user_id: str) -> list[Task]:
        """List the flat task list of a user, newest update first."""
        ...

    async def update_task(self, user_id: str, task_id: str, updates: dict[str, Any]) -> None:
        """
        Merge a partial update into a task.

        Raises:
            InvalidInputError: If the task id is malformed
            StorageError: If the write fails
        """
        ...

    async def get_progress(self, user_id: str, sprint_id: str) -> UserProgress | None:
        """Get the progress record of (user, sprint), None if absent."""
        ...

    async def save_progress(self, progress: UserProgress) -> None:
        """Insert or replace a whole progress record."""
        ...

    async def update_task_status(self, user_id: str, sprint_id: str, status: TaskStatus) -> None:
        """
        Upsert a task status by its composite key and recompute stats.

        Raises:
            StorageError: If the write fails
        """
        ...

    async def update_journal_entry(
        self, user_id: str, sprint_id: str, entry: JournalEntry
    ) -> None:
        """
        Upsert a journal entry by day id.

        Raises:
            StorageError: If the write fails
        """
        ...


# Backend registry
_backends: dict[UserKind, type[StorageBackend]] = {}


def register_backend(kind: UserKind) -> Callable[[type[Any]], type[Any]]:
    """
    Decorator to register the backend class serving one kind of user.

    Usage:
        @register_backend(UserKind.LOCAL)
        class LocalBackend:
            ...
    """

    def decorator(backend_class: type[Any]) -> type[Any]:
        _backends[kind] = backend_class
        return backend_class

    return decorator


def get_backend_class(kind: UserKind) -> type[StorageBackend]:
    backend_class = _backends.get(kind)
    if backend_class is None:
        available = ", ".join(k.value for k in _backends)
        raise ValueError(f"No backend registered for '{kind.value}'. Available: {available}")
    return backend_class


def list_backends() -> list[str]:
    return [kind.value for kind in _backends]


class StorageRouter:
    """
    Picks the backend for a user id on every call.

    The router holds one backend instance per user kind. Stores call
    ``for_user`` right before each storage operation, so a user switch never
    leaves a store bound to the previous user's backend.

    Example:
        >>> router = StorageRouter({UserKind.LOCAL: LocalBackend(data_dir)})
        >>> backend = router.for_user("local_1700000000000_abc123xyz")
        >>> backend.backend_name
        'local'
    """

    def __init__(self, backends: dict[UserKind, StorageBackend]) -> None:
        self._backends = dict(backends)

    def for_kind(self, kind: UserKind) -> StorageBackend:
        backend = self._backends.get(kind)
        if backend is None:
            raise StorageError(f"No storage configured for {kind.value} users", "unavailable")
        return backend

    def for_user(self, user_id: str) -> StorageBackend:
        return self.for_kind(classify(user_id))

    def kind_of(self, user_id: str) -> UserKind:
        return classify(user_id)

    @property
    def kinds(self) -> list[UserKind]:
        return list(self._backends)


__all__ = [
    "StorageBackend",
    "StorageRouter",
    "get_backend_class",
    "list_backends",
    "register_backend",
]
