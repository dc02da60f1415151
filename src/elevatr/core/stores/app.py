"""
App store: global UI flags, route payload cache and navigation history.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from .base import ObservableStore

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

DEFAULT_ROUTE_CACHE_MAX_AGE = 300.0
DEFAULT_REFRESH_MAX_AGE = 300.0
DEFAULT_HISTORY_LIMIT = 10


class CachedRoute(BaseModel):
    """A cached route payload and when it was stored (clock seconds)."""

    timestamp: float
    data: Any = None


class NavigationState(BaseModel):
    current_route: str = "/"
    previous_route: str | None = None
    is_navigating: bool = False
    navigation_history: list[str] = Field(default_factory=list)


class AppStore(ObservableStore):
    """
    Cross-cutting UI state.

    Args:
        clock: Returns the current time in seconds (``time.time`` by default)
        history_limit: Maximum number of routes kept in navigation history
        route_cache_max_age: Default max age (seconds) of cached route payloads

    Example:
        >>> store = AppStore(clock=lambda: 1000.0)
        >>> store.cache_route_data("/sprint", {"id": "s1"})
        >>> store.get_cached_route_data("/sprint")
        {'id': 's1'}
    """

    def __init__(
        self,
        clock: Clock | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        route_cache_max_age: float = DEFAULT_ROUTE_CACHE_MAX_AGE,
    ) -> None:
        super().__init__()
        self.clock = clock or time.time
        self.history_limit = history_limit
        self.route_cache_max_age = route_cache_max_age
        self.global_loading = False
        self.sidebar_collapsed = False
        self.last_data_refresh = 0.0
        self.route_cache: dict[str, CachedRoute] = {}
        self.navigation = NavigationState()

    # ------------------------------------------------------------------
    # Global flags
    # ------------------------------------------------------------------

    def set_global_loading(self, loading: bool) -> None:
        self.global_loading = loading
        self._notify()

    def toggle_sidebar(self) -> None:
        self.sidebar_collapsed = not self.sidebar_collapsed
        self._notify()

    def set_sidebar_collapsed(self, collapsed: bool) -> None:
        self.sidebar_collapsed = collapsed
        self._notify()

    def update_last_data_refresh(self) -> None:
        self.last_data_refresh = self.clock()
        self._notify()

    def should_refresh_data(self, max_age: float = DEFAULT_REFRESH_MAX_AGE) -> bool:
        """True when the last data refresh is more than ``max_age`` seconds old."""
        return self.clock() - self.last_data_refresh > max_age

    # ------------------------------------------------------------------
    # Route cache
    # ------------------------------------------------------------------

    def cache_route_data(self, route: str, data: Any) -> None:
        self.route_cache[route] = CachedRoute(timestamp=self.clock(), data=data)
        self._notify()

    def get_cached_route_data(self, route: str, max_age: float | None = None) -> Any:
        """
        Return the cached payload of ``route``, or None.

        An entry older than ``max_age`` seconds (the store's
        ``route_cache_max_age`` when omitted) is deleted on access.
        """
        cached = self.route_cache.get(route)
        if cached is None:
            return None
        if max_age is None:
            max_age = self.route_cache_max_age
        if self.clock() - cached.timestamp > max_age:
            del self.route_cache[route]
            self._notify()
            return None
        return cached.data

    def clear_route_cache(self, route: str | None = None) -> None:
        """Drop one route's payload, or every payload when ``route`` is None."""
        if route is None:
            self.route_cache = {}
        else:
            self.route_cache.pop(route, None)
        self._notify()

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @property
    def current_route(self) -> str:
        return self.navigation.current_route

    @property
    def previous_route(self) -> str | None:
        return self.navigation.previous_route

    @property
    def is_navigating(self) -> bool:
        return self.navigation.is_navigating

    @property
    def navigation_history(self) -> list[str]:
        return list(self.navigation.navigation_history)

    def _with_history(self, route: str) -> list[str]:
        # Re-visits move to the end; oldest entries fall off past the limit
        history = [r for r in self.navigation.navigation_history if r != route]
        history.append(route)
        return history[-self.history_limit:]

    def add_to_navigation_history(self, route: str) -> None:
        self.navigation = self.navigation.model_copy(
            update={"navigation_history": self._with_history(route)}
        )
        self._notify()

    def start_navigation(self, href: str) -> None:
        """Flag a navigation as in flight unless ``href`` is already current."""
        if href == self.navigation.current_route:
            return
        self.navigation = self.navigation.model_copy(update={"is_navigating": True})
        self._notify()

    def set_current_route(self, route: str) -> None:
        """Record that ``route`` is now displayed; clears ``is_navigating`` on change."""
        nav = self.navigation
        if route == nav.current_route:
            return
        self.navigation = nav.model_copy(
            update={
                "previous_route": nav.current_route,
                "current_route": route,
                "is_navigating": False,
                "navigation_history": self._with_history(route),
            }
        )
        self._notify()

    def set_navigating(self, navigating: bool) -> None:
        self.navigation = self.navigation.model_copy(update={"is_navigating": navigating})
        self._notify()

    def can_go_back(self) -> bool:
        return len(self.navigation.navigation_history) > 1

    def restore(self, sidebar_collapsed: bool, history: list[str]) -> None:
        """Restore persisted UI state: sidebar flag and navigation history."""
        self.sidebar_collapsed = sidebar_collapsed
        for route in history:
            self.navigation = self.navigation.model_copy(
                update={"navigation_history": self._with_history(route)}
            )
        self._notify()
