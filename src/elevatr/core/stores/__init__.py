"""
In-memory entity stores.

Each store owns its cache and exposes loading/error/updating flags. Store
instances are created per context (see ``elevatr.core.context``), never as
module-level singletons.
"""

from .app import AppStore, CachedRoute, NavigationState
from .base import ObservableStore
from .optimistic import Revisions, run_optimistic
from .progress import UserProgressStore
from .sprints import SprintStore
from .tasks import TEMP_TASK_PREFIX, TaskStore

__all__ = [
    "AppStore",
    "CachedRoute",
    "NavigationState",
    "ObservableStore",
    "Revisions",
    "SprintStore",
    "TEMP_TASK_PREFIX",
    "TaskStore",
    "UserProgressStore",
    "run_optimistic",
]
