"""
Storage backends for sprints, tasks and user progress.

Importing this package registers the three backends (cloud, local, guest).
Use ``create_router`` to get a router holding one instance of each.
"""

import logging

from elevatr.core.config import ElevatrConfig
from elevatr.core.identity import UserKind

from .backend import (
    StorageBackend,
    StorageRouter,
    get_backend_class,
    list_backends,
    register_backend,
)
from .cloud import CloudBackend, DocumentClient
from .documents import JsonDocumentStore
from .errors import (
    CloudStoreError,
    InvalidInputError,
    RecordNotFoundError,
    StorageCorruptedError,
    StorageError,
)
from .guest import GuestBackend
from .local import LocalBackend
from .migration import (
    DataSummary,
    MigrationResult,
    get_data_summary,
    has_data_to_migrate,
    migrate_guest_data_to_user,
    migrate_user_data,
    sync_local_to_remote,
    sync_remote_to_local,
)

logger = logging.getLogger(__name__)


def create_router(config: ElevatrConfig) -> StorageRouter:
    """
    Build a router with a backend for every configured user kind.

    Each backend comes from the class registered for its kind. The cloud
    backend is only created when a cloud URL is configured; cloud users then
    get a StorageError("unavailable") from the router.
    """
    storage = config.storage
    backends: dict[UserKind, StorageBackend] = {}
    for kind in UserKind:
        if kind == UserKind.CLOUD and not storage.cloud_url:
            logger.debug("No cloud URL configured, cloud storage disabled")
            continue
        backends[kind] = get_backend_class(kind).from_config(storage)
    return StorageRouter(backends)


__all__ = [
    "CloudBackend",
    "CloudStoreError",
    "DataSummary",
    "DocumentClient",
    "GuestBackend",
    "InvalidInputError",
    "JsonDocumentStore",
    "LocalBackend",
    "MigrationResult",
    "RecordNotFoundError",
    "StorageBackend",
    "StorageCorruptedError",
    "StorageError",
    "StorageRouter",
    "create_router",
    "get_backend_class",
    "get_data_summary",
    "has_data_to_migrate",
    "list_backends",
    "migrate_guest_data_to_user",
    "migrate_user_data",
    "register_backend",
    "sync_local_to_remote",
    "sync_remote_to_local",
]
