"""
Debounced persistence of navigation state.

The sidebar flag, current route and navigation history of an AppStore are
written to the ``elevatr_navigation_state`` document. Rapid changes are
coalesced: each change (re)starts a timer and only the last one writes.
``flush`` writes immediately and is meant for shutdown or page-hide hooks.
"""

import asyncio
import logging

from pydantic import BaseModel, Field, ValidationError

from elevatr.core.storage import JsonDocumentStore, StorageError
from elevatr.core.stores import AppStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "elevatr_navigation_state"
STATE_VERSION = "1.0"


class PersistedNavigation(BaseModel):
    """Stored navigation document. ``timestamp`` is epoch milliseconds."""

    current_route: str = "/"
    sidebar_collapsed: bool = False
    navigation_history: list[str] = Field(default_factory=list)
    timestamp: float
    version: str | None = None


class NavigationPersistence:
    """
    Saves and restores an AppStore's navigation state.

    Example:
        >>> persistence = NavigationPersistence(app_store, JsonDocumentStore(data_dir))
        >>> persistence.load()
        >>> unsubscribe = persistence.attach()
        >>> app_store.set_current_route("/sprint")   # saved 0.5s later
        >>> persistence.flush()
    """

    def __init__(
        self,
        app_store: AppStore,
        documents: JsonDocumentStore,
        debounce: float = 0.5,
        max_age_hours: float = 24.0,
    ) -> None:
        self.app_store = app_store
        self.documents = documents
        self.debounce = debounce
        self.max_age_hours = max_age_hours
        self._pending: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def _snapshot(self) -> PersistedNavigation:
        store = self.app_store
        return PersistedNavigation(
            current_route=store.current_route,
            sidebar_collapsed=store.sidebar_collapsed,
            navigation_history=store.navigation_history,
            timestamp=store.clock() * 1000,
            version=STATE_VERSION,
        )

    def _write(self) -> None:
        self._pending = None
        try:
            self.documents.set(STORAGE_KEY, self._snapshot().model_dump())
        except (StorageError, OSError) as e:
            logger.warning("Failed to save navigation state: %s", e)

    def schedule_save(self) -> None:
        """(Re)start the debounce timer. Requires a running event loop."""
        loop = asyncio.get_running_loop()
        if self._pending is not None:
            self._pending.cancel()
        self._pending = loop.call_later(self.debounce, self._write)

    def flush(self) -> None:
        """Cancel any pending timer and write now."""
        if self._pending is not None:
            self._pending.cancel()
        self._write()

    def attach(self):
        """Save (debounced) after every AppStore change; returns an unsubscribe function."""

        def on_change() -> None:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                # No loop (sync callers); write straight away
                self._write()
                return
            self.schedule_save()

        return self.app_store.subscribe(on_change)

    def load(self) -> bool:
        """
        Restore the stored state into the AppStore.

        Stored state from another version, older than ``max_age_hours`` or
        unreadable is deleted instead.

        Returns:
            True when state was restored
        """
        try:
            raw = self.documents.get(STORAGE_KEY)
            if raw is None:
                return False
            state = PersistedNavigation.model_validate(raw)
        except (StorageError, ValidationError) as e:
            logger.warning("Failed to load navigation state: %s", e)
            self.documents.delete(STORAGE_KEY)
            return False

        if state.version != STATE_VERSION:
            logger.debug("Discarding navigation state from version %s", state.version)
            self.documents.delete(STORAGE_KEY)
            return False

        age_ms = self.app_store.clock() * 1000 - state.timestamp
        if age_ms > self.max_age_hours * 3600 * 1000:
            logger.debug("Discarding navigation state older than %sh", self.max_age_hours)
            self.documents.delete(STORAGE_KEY)
            return False

        self.app_store.restore(state.sidebar_collapsed, state.navigation_history)
        logger.debug("Navigation state restored from storage")
        return True
