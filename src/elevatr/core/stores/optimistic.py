"""
Optimistic update helper shared by the entity stores.

Every optimistic write has the same shape: mutate the in-memory cache right
away, persist through the storage backend, and undo the mutation when the
backend call fails. ``run_optimistic`` implements that shape once.

Overlapping writes to the same key are tracked with a per-key revision
counter. When a write fails, its rollback is told whether it is still the
latest write for that key:

- latest: nothing else touched the key since, so the captured snapshot can
  be restored as-is
- stale: a later write has landed on top; the rollback must only undo what
  the failed write itself changed, and only if that value is still in place

Example:
    >>> revisions = Revisions()
    >>> await run_optimistic(
    ...     revisions,
    ...     key=sprint_id,
    ...     apply=lambda: store._replace(updated),
    ...     persist=lambda: backend.update_sprint(user_id, sprint_id, updates),
    ...     rollback=lambda latest: store._revert(previous, updated, latest),
    ... )
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


class Revisions:
    """Per-key write counters."""

    def __init__(self) -> None:
        self._counters: dict[str, int] = {}

    def bump(self, key: str) -> int:
        """Record a new write for ``key`` and return its revision token."""
        revision = self._counters.get(key, 0) + 1
        self._counters[key] = revision
        return revision

    def current(self, key: str) -> int:
        return self._counters.get(key, 0)

    def is_latest(self, key: str, revision: int) -> bool:
        return self._counters.get(key, 0) == revision

    def clear(self) -> None:
        self._counters.clear()


async def run_optimistic(
    revisions: Revisions,
    key: str,
    apply: Callable[[], None],
    persist: Callable[[], Awaitable[T]],
    rollback: Callable[[bool], None],
) -> T:
    """
    Apply a mutation, persist it, and roll it back on failure.

    ``apply`` runs synchronously before ``persist`` is awaited, so readers see
    the new state while the write is in flight.

    Args:
        revisions: Revision counters of the calling store
        key: Identity of the cached entity being written
        apply: Mutates the in-memory cache
        persist: Performs the backend write
        rollback: Undoes the mutation; receives True when this write is
            still the latest one for ``key``

    Returns:
        Whatever ``persist`` returned

    Raises:
        Exception: Re-raises the backend failure after rolling back
    """
    apply()
    revision = revisions.bump(key)
    try:
        return await persist()
    except Exception:
        rollback(revisions.is_latest(key, revision))
        raise
