"""
Copying user data between storage backends.

A guest who signs in, or a cloud user going offline, needs their sprints and
progress moved to another backend. Everything here goes through the
StorageBackend contract, so any pair of backends works. Sprint ids are kept,
which makes a repeated copy overwrite instead of duplicate.

The source is only cleared after every item was copied; a partial copy
keeps the source as a backup.
"""

import asyncio
import logging
from typing import Protocol, runtime_checkable

from pydantic import Field

from elevatr.core.identity import CACHED_PREFIX, UserKind
from elevatr.core.models import ElevatrModel, Sprint, UserProgress, utcnow

from .backend import StorageBackend, StorageRouter
from .errors import StorageError

logger = logging.getLogger(__name__)


@runtime_checkable
class ClearableBackend(Protocol):
    """Backend that can drop every document of one user (blocking)."""

    def clear_user(self, user_id: str) -> None: ...


class DataSummary(ElevatrModel):
    """What a user has stored, used to decide whether to offer a migration."""

    sprints: list[Sprint] = Field(default_factory=list)
    user_progress: list[UserProgress] = Field(default_factory=list)
    total_tasks: int = 0
    total_journal_entries: int = 0


class MigrationResult(ElevatrModel):
    success: bool = True
    sprints: int = 0
    tasks: int = 0
    journal_entries: int = 0
    errors: list[str] = Field(default_factory=list)


async def _read_user_data(
    backend: StorageBackend, user_id: str
) -> tuple[list[Sprint], list[UserProgress]]:
    sprints = await backend.get_sprints_by_user(user_id)
    progress = []
    for sprint in sprints:
        record = await backend.get_progress(user_id, sprint.id)
        if record is not None:
            progress.append(record)
    return sprints, progress


async def get_data_summary(backend: StorageBackend, user_id: str) -> DataSummary | None:
    """
    Summarize a user's stored data.

    Returns:
        The summary, or None when the user has no sprints and no recorded
        progress
    """
    sprints, progress = await _read_user_data(backend, user_id)
    total_tasks = sum(len(p.task_statuses) for p in progress)
    total_journal_entries = sum(len(p.journal_entries) for p in progress)
    if not sprints and not total_tasks and not total_journal_entries:
        return None
    return DataSummary(
        sprints=sprints,
        user_progress=progress,
        total_tasks=total_tasks,
        total_journal_entries=total_journal_entries,
    )


async def has_data_to_migrate(backend: StorageBackend, user_id: str) -> bool:
    return await get_data_summary(backend, user_id) is not None


def _reown_progress(progress: UserProgress, user_id: str) -> UserProgress:
    entries = [e.model_copy(update={"user_id": user_id}) for e in progress.journal_entries]
    return progress.model_copy(update={"user_id": user_id, "journal_entries": entries})


async def clear_user_data(backend: StorageBackend, user_id: str) -> bool:
    """
    Delete every document of a user, when the backend supports it.

    Returns:
        False when the backend has no way to clear a user
    """
    if not isinstance(backend, ClearableBackend):
        logger.warning("%s storage cannot clear user data", backend.backend_name)
        return False
    await asyncio.to_thread(backend.clear_user, user_id)
    return True


async def migrate_user_data(
    source: StorageBackend,
    source_user_id: str,
    target: StorageBackend,
    target_user_id: str,
    clear_source: bool = True,
    replace_target: bool = False,
) -> MigrationResult:
    """
    Copy all sprints and progress of one user into another backend.

    Every copied record is re-owned by ``target_user_id``. A failure on one
    sprint or progress record is recorded in ``errors`` and the copy goes
    on with the next one.

    Args:
        source: Backend to read from
        source_user_id: Owner of the data in ``source``
        target: Backend to write to
        target_user_id: Owner of the copied data
        clear_source: Delete the source data when everything was copied
        replace_target: Clear the target user before copying, once the source
            has been read

    Returns:
        MigrationResult with per-kind counts and any item errors

    Raises:
        StorageError: If the source data cannot be read
    """
    result = MigrationResult()
    sprints, progress = await _read_user_data(source, source_user_id)
    if not sprints and not progress:
        result.success = False
        result.errors.append("No data found to migrate")
        return result

    if replace_target:
        await clear_user_data(target, target_user_id)

    logger.info(
        "Migrating %d sprints of %s to %s storage",
        len(sprints),
        source_user_id,
        target.backend_name,
    )

    # Oldest first so the newest sprint wins when active flags disagree
    for sprint in sorted(sprints, key=lambda s: s.created_at):
        migrated = sprint.model_copy(update={"user_id": target_user_id, "updated_at": utcnow()})
        try:
            await target.put_sprint(migrated)
        except StorageError as e:
            logger.error("Failed to migrate sprint %s: %s", sprint.id, e)
            result.errors.append(f"Failed to migrate sprint: {sprint.title}")
            continue
        result.sprints += 1

    for record in progress:
        try:
            await target.save_progress(_reown_progress(record, target_user_id))
        except StorageError as e:
            logger.error("Failed to migrate progress of sprint %s: %s", record.sprint_id, e)
            result.errors.append(f"Failed to migrate progress for sprint: {record.sprint_id}")
            continue
        result.tasks += len(record.task_statuses)
        result.journal_entries += len(record.journal_entries)

    if result.errors:
        result.success = False
        logger.warning(
            "Migration of %s finished with %d errors, keeping source data",
            source_user_id,
            len(result.errors),
        )
    elif clear_source:
        await clear_user_data(source, source_user_id)
        logger.info("Migrated and cleared data of %s", source_user_id)
    return result


async def migrate_guest_data_to_user(
    router: StorageRouter, guest_id: str, user_id: str
) -> MigrationResult:
    """Move a guest session's data to the backend of ``user_id``."""
    return await migrate_user_data(
        router.for_kind(UserKind.GUEST), guest_id, router.for_user(user_id), user_id
    )


async def clear_guest_data(router: StorageRouter, guest_id: str) -> bool:
    return await clear_user_data(router.for_kind(UserKind.GUEST), guest_id)


def cached_user_id(user_id: str) -> str:
    """Id under which a cloud user's offline copy is stored on the device."""
    if user_id.startswith(CACHED_PREFIX):
        return user_id
    return f"{CACHED_PREFIX}{user_id}"


async def sync_remote_to_local(router: StorageRouter, user_id: str) -> MigrationResult:
    """
    Replace the offline copy of a cloud user with the current cloud data.

    The previous copy is cleared once the cloud data has been read, so
    sprints deleted in the cloud do not linger on the device.
    """
    return await migrate_user_data(
        router.for_kind(UserKind.CLOUD),
        user_id,
        router.for_kind(UserKind.LOCAL),
        cached_user_id(user_id),
        clear_source=False,
        replace_target=True,
    )


async def sync_local_to_remote(router: StorageRouter, user_id: str) -> MigrationResult:
    """Push the offline copy of a cloud user back to the cloud."""
    return await migrate_user_data(
        router.for_kind(UserKind.LOCAL),
        cached_user_id(user_id),
        router.for_kind(UserKind.CLOUD),
        user_id,
        clear_source=False,
    )


__all__ = [
    "ClearableBackend",
    "DataSummary",
    "MigrationResult",
    "cached_user_id",
    "clear_guest_data",
    "clear_user_data",
    "get_data_summary",
    "has_data_to_migrate",
    "migrate_guest_data_to_user",
    "migrate_user_data",
    "sync_local_to_remote",
    "sync_remote_to_local",
]
