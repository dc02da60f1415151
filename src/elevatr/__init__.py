"""
Elevatr - career sprint tracking core.

Multi-store sync and optimistic-update layer over cloud, local-device and
guest storage.
"""

__version__ = "1.0.0"

# Re-export core models for convenience
from elevatr.core.config.models import ElevatrConfig
from elevatr.core.models import Sprint, SprintStatus, Task, TaskStatus, UserProgress

__all__ = [
    "ElevatrConfig",
    "Sprint",
    "SprintStatus",
    "Task",
    "TaskStatus",
    "UserProgress",
    "__version__",
]
