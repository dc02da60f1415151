"""Store lifecycle orchestration and navigation state persistence."""

from .orchestrator import DataSync
from .persistence import STATE_VERSION, STORAGE_KEY, NavigationPersistence, PersistedNavigation

__all__ = [
    "DataSync",
    "NavigationPersistence",
    "PersistedNavigation",
    "STATE_VERSION",
    "STORAGE_KEY",
]
