"""
Identity resolution: which storage a user's data lives in.

User ids carry their kind in a prefix. Guest sessions (``guest_...``) keep
data in the embedded guest database, device-only users (``local_...``) and
offline copies of cloud users (``cached_...``) keep it in local JSON
documents, and every other id belongs to a cloud account.
"""

import secrets
import string
import time
from enum import Enum

GUEST_PREFIX = "guest_"
LOCAL_PREFIX = "local_"
CACHED_PREFIX = "cached_"

_ID_CHARS = string.ascii_lowercase + string.digits
_ID_SUFFIX_LENGTH = 9


class UserKind(str, Enum):
    """Where a user's data is persisted."""

    CLOUD = "cloud"
    LOCAL = "local"
    GUEST = "guest"


def is_guest_user(user_id: str) -> bool:
    return user_id.startswith(GUEST_PREFIX)


def is_cached_user(user_id: str) -> bool:
    return user_id.startswith(CACHED_PREFIX)


def is_local_user(user_id: str) -> bool:
    return user_id.startswith(LOCAL_PREFIX) or is_cached_user(user_id)


def classify(user_id: str) -> UserKind:
    """
    Classify a user id. Pure predicate over the id's prefix, no I/O.

    Example:
        >>> classify("guest_1700000000000_k3j9x0a1b")
        <UserKind.GUEST: 'guest'>
        >>> classify("cached_abc")
        <UserKind.LOCAL: 'local'>
        >>> classify("Zk81hFq2")
        <UserKind.CLOUD: 'cloud'>
    """
    if is_guest_user(user_id):
        return UserKind.GUEST
    if is_local_user(user_id):
        return UserKind.LOCAL
    return UserKind.CLOUD


def generate_id(prefix: str) -> str:
    """Generate ``{prefix}{epoch_ms}_{9 random lowercase alphanumerics}``."""
    suffix = "".join(secrets.choice(_ID_CHARS) for _ in range(_ID_SUFFIX_LENGTH))
    return f"{prefix}{int(time.time() * 1000)}_{suffix}"


def generate_local_user_id() -> str:
    return generate_id(LOCAL_PREFIX)


def generate_guest_id() -> str:
    return generate_id(GUEST_PREFIX)
