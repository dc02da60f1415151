"""
Data sync orchestrator: ties sign-in state to store lifecycle.

- sign-in as a different user: every entity store is cleared first
- sign-in (same or new user): sprints, active sprint and tasks are reloaded
  when the user changed or the last refresh is older than the refresh
  interval
- sign-out: every entity store is cleared and pending progress loads are
  cancelled; loads still in flight from the previous session are dropped
- whenever the cached active sprint changes while a user is signed in, the
  progress of that sprint is loaded
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from elevatr.core.context import StoreContext

logger = logging.getLogger(__name__)


class DataSync:
    """
    Reacts to auth changes and active-sprint changes.

    Example:
        >>> ctx = create_context()
        >>> sync = DataSync(ctx)
        >>> await sync.on_auth_change("local_1700000000000_abc123xyz")
        >>> await sync.wait_idle()    # progress of the active sprint is loaded
        >>> await sync.on_auth_change(None)
    """

    def __init__(self, context: StoreContext) -> None:
        self.context = context
        self.user_id: str | None = None
        self._active_sprint_id: str | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self._unsubscribe = context.sprints.subscribe(self._on_sprints_change)

    @property
    def refresh_interval(self) -> float:
        return self.context.config.sync.refresh_interval_seconds

    def _clear_stores(self) -> None:
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        self.context.sprints.clear_all()
        self.context.tasks.clear_all()
        self.context.progress.clear()
        self._active_sprint_id = None

    async def on_auth_change(self, user_id: str | None) -> None:
        """
        Handle a sign-in (``user_id``) or sign-out (None).

        Load failures are logged, never raised; they surface through the
        stores' ``error`` fields.
        """
        if user_id is None:
            logger.debug("Signed out, clearing stores")
            self.user_id = None
            self._clear_stores()
            return

        user_changed = user_id != self.user_id
        if user_changed:
            logger.debug("User changed to %s, clearing stores", user_id)
            self._clear_stores()
        self.user_id = user_id

        if not (user_changed or self.context.app.should_refresh_data(self.refresh_interval)):
            return

        ctx = self.context
        try:
            await asyncio.gather(ctx.sprints.load_all(user_id), ctx.sprints.load_active(user_id))
            if self.user_id != user_id:
                logger.debug("User changed while loading data for %s", user_id)
                return
            await ctx.tasks.load_all(user_id)
            if self.user_id == user_id:
                ctx.app.update_last_data_refresh()
        except Exception as e:
            logger.error("Error loading initial data for %s: %s", user_id, e)

    def _on_sprints_change(self) -> None:
        active = self.context.sprints.active_sprint
        active_id = active.id if active is not None else None
        if active_id == self._active_sprint_id:
            return
        self._active_sprint_id = active_id

        if active_id is None or self.user_id is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, progress for sprint %s not loaded", active_id)
            return

        task = loop.create_task(self.context.progress.load(self.user_id, active_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def wait_idle(self) -> None:
        """Wait until every scheduled progress load has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def close(self) -> None:
        """Stop watching the sprint store."""
        self._unsubscribe()
