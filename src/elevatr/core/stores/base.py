"""
Change notification shared by all stores.

Stores are plain objects whose public attributes are the state. After each
state change a store calls ``_notify()``, which invokes every subscribed
listener synchronously.

Resetting a store starts a new generation. Loads and write rollbacks that
began in an earlier generation drop their results.
"""

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class ObservableStore:
    """Base class giving a store ``subscribe``/``_notify``."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._generation = 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called after every state change.

        Returns:
            A function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    def _invalidate(self) -> None:
        """Mark every load or write started before now as outdated."""
        self._generation += 1

    def _is_current(self, generation: int) -> bool:
        return self._generation == generation
