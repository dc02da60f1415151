"""
Sprint store: in-memory cache of a user's sprints.

Reads are load-once: a non-empty cache (or a cached active sprint) is
returned as-is until ``clear_all``. Read failures never raise; they set
``error``. Writes update the cache optimistically and re-raise on failure.
"""

import logging
from typing import Any

from elevatr.core.models import Sprint, SprintDraft, SprintStatus, utcnow
from elevatr.core.storage import StorageRouter

from .base import ObservableStore
from .optimistic import Revisions, run_optimistic

logger = logging.getLogger(__name__)


class SprintStore(ObservableStore):
    """
    Cache of sprints plus the user's active sprint.

    Invariant: after ``create`` of an active sprint, at most one cached
    sprint has status ACTIVE.

    Example:
        >>> store = SprintStore(router)
        >>> await store.load_all(user_id)
        >>> sprint_id = await store.create(draft)
        >>> store.active_sprint.id == sprint_id
        True
    """

    def __init__(self, router: StorageRouter) -> None:
        super().__init__()
        self.router = router
        self.sprints: list[Sprint] = []
        self.active_sprint: Sprint | None = None
        self.loading = False
        self.error: str | None = None
        self.user_id: str | None = None
        self._revisions = Revisions()

    def _start_loading(self) -> None:
        self.loading = True
        self.error = None
        self._notify()

    def _fail(self, message: str) -> None:
        self.loading = False
        self.error = message
        self._notify()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_all(self, user_id: str) -> None:
        """Load all sprints of a user unless some are already cached."""
        if self.sprints:
            return

        generation = self._generation
        self._start_loading()
        try:
            sprints = await self.router.for_user(user_id).get_sprints_by_user(user_id)
        except Exception as e:
            if not self._is_current(generation):
                return
            logger.error("Error loading sprints for %s: %s", user_id, e)
            self._fail("Failed to load sprints")
            return

        if not self._is_current(generation):
            logger.debug("Dropping sprints of %s loaded before a reset", user_id)
            return
        self.sprints = list(sprints)
        self.user_id = user_id
        self.loading = False
        self._notify()

    async def load_active(self, user_id: str) -> None:
        """Load the active sprint unless one is already cached."""
        if self.active_sprint is not None:
            return

        generation = self._generation
        self._start_loading()
        try:
            active = await self.router.for_user(user_id).get_active_sprint(user_id)
        except Exception as e:
            if not self._is_current(generation):
                return
            logger.error("Error loading active sprint for %s: %s", user_id, e)
            self._fail("Failed to load active sprint")
            return

        if not self._is_current(generation):
            logger.debug("Dropping active sprint of %s loaded before a reset", user_id)
            return
        self.active_sprint = active
        self.user_id = user_id
        self.loading = False
        self._notify()

    async def load_one(self, sprint_id: str, user_id: str | None = None) -> Sprint | None:
        """
        Get a sprint, fetching it only on a cache miss.

        Args:
            sprint_id: Sprint to load
            user_id: Owner id; defaults to the user whose sprints are cached

        Returns:
            The sprint, or None when it doesn't exist or the load failed
        """
        cached = self.get_cached(sprint_id)
        if cached is not None:
            return cached

        owner = user_id or self.user_id
        if owner is None:
            logger.error("Cannot load sprint %s without a user id", sprint_id)
            self.error = "Failed to load sprint"
            self._notify()
            return None

        generation = self._generation
        self._start_loading()
        try:
            sprint = await self.router.for_user(owner).get_sprint(sprint_id, owner)
        except Exception as e:
            if not self._is_current(generation):
                return None
            logger.error("Error loading sprint %s: %s", sprint_id, e)
            self._fail("Failed to load sprint")
            return None

        if not self._is_current(generation):
            logger.debug("Dropping sprint %s loaded before a reset", sprint_id)
            return sprint
        if sprint is None:
            self._fail("Sprint not found")
            return None

        self.sprints = [s for s in self.sprints if s.id != sprint_id] + [sprint]
        self.loading = False
        self._notify()
        return sprint

    def get_cached(self, sprint_id: str) -> Sprint | None:
        for sprint in self.sprints:
            if sprint.id == sprint_id:
                return sprint
        return None

    def lookup(self, sprint_id: str) -> Sprint | None:
        """Cached sprint by id, including an active sprint not in the list."""
        cached = self.get_cached(sprint_id)
        if cached is None and self.active_sprint is not None and self.active_sprint.id == sprint_id:
            return self.active_sprint
        return cached

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, draft: SprintDraft) -> str:
        """
        Persist a new sprint and add it to the cache.

        The cache is only touched after the backend has returned an id. When
        the new sprint is active, every other cached active sprint is demoted
        to completed and the new one becomes ``active_sprint``.

        Raises:
            Exception: The backend failure, after setting ``error``
        """
        generation = self._generation
        self._start_loading()
        try:
            sprint_id = await self.router.for_user(draft.user_id).create_sprint(
                draft.user_id, draft
            )
        except Exception as e:
            logger.error("Error creating sprint: %s", e)
            self._fail("Failed to create sprint")
            raise

        if not self._is_current(generation):
            logger.debug("Sprint %s created before a reset, not cached", sprint_id)
            return sprint_id
        sprint = Sprint.from_draft(draft, sprint_id)
        sprints = list(self.sprints)
        if sprint.is_active:
            now = utcnow()
            demoted = []
            for i, s in enumerate(sprints):
                if s.is_active:
                    sprints[i] = s.model_copy(
                        update={"status": SprintStatus.COMPLETED, "updated_at": now}
                    )
                    demoted.append(s.id)
            # A demotion counts as a write to the demoted sprint
            for demoted_id in demoted:
                self._revisions.bump(demoted_id)
            self.active_sprint = sprint
        sprints.append(sprint)

        self.sprints = sprints
        self.user_id = draft.user_id
        self.loading = False
        self._notify()
        return sprint_id

    async def update_optimistic(self, sprint_id: str, updates: dict[str, Any]) -> None:
        """
        Merge ``updates`` into the cached sprint, then persist.

        Both the list entry and the active sprint (when it is the same
        sprint) are updated before the backend is called. On failure each
        of them is restored only while it still holds the value this write
        installed; ``error`` is set and the exception is re-raised.
        """
        previous = self.get_cached(sprint_id)
        if previous is None:
            logger.error("Sprint %s not found for update", sprint_id)
            return

        stamped = {**updates, "updated_at": utcnow()}
        updated = previous.with_updates(stamped)
        previous_active = self.active_sprint
        updated_active = (
            previous_active.with_updates(stamped)
            if previous_active is not None and previous_active.id == sprint_id
            else previous_active
        )

        def apply() -> None:
            self._replace(sprint_id, updated)
            self.active_sprint = updated_active
            self._notify()

        generation = self._generation

        def rollback(latest: bool) -> None:
            if not self._is_current(generation):
                return
            if self.get_cached(sprint_id) is updated:
                self._replace(sprint_id, previous)
            else:
                logger.warning(
                    "Sprint %s changed since the failed update, not reverting", sprint_id
                )
            if updated_active is not previous_active and self.active_sprint is updated_active:
                self.active_sprint = previous_active
            self.error = "Failed to update sprint"
            self._notify()

        try:
            await run_optimistic(
                self._revisions,
                sprint_id,
                apply,
                lambda: self.router.for_user(previous.user_id).update_sprint(
                    previous.user_id, sprint_id, updates
                ),
                rollback,
            )
        except Exception as e:
            logger.error("Error updating sprint %s: %s", sprint_id, e)
            raise

    def _replace(self, sprint_id: str, sprint: Sprint) -> None:
        self.sprints = [sprint if s.id == sprint_id else s for s in self.sprints]

    # ------------------------------------------------------------------
    # Resets
    # ------------------------------------------------------------------

    def clear_error(self) -> None:
        self.error = None
        self._notify()

    def clear_all(self) -> None:
        """Reset to the initial empty state (logout hook)."""
        self.sprints = []
        self.active_sprint = None
        self.loading = False
        self.error = None
        self.user_id = None
        self._revisions.clear()
        self._invalidate()
        self._notify()
