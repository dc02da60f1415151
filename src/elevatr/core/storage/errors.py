"""
Storage error hierarchy shared by all backends.

Every error carries a short machine-readable ``code`` so callers can branch
on the failure class without parsing messages.
"""


class StorageError(Exception):
    """Base class for storage failures."""

    code = "unknown-error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return self.message


class RecordNotFoundError(StorageError):
    """A document required by a write does not exist."""

    code = "not-found"


class InvalidInputError(StorageError):
    """Arguments failed validation before any I/O was attempted."""

    code = "invalid-input"


class StorageCorruptedError(StorageError):
    """A persisted document could not be parsed."""

    code = "corrupted"


class CloudStoreError(StorageError):
    """
    Failure talking to the cloud document API.

    Attributes:
        code: One of permission-denied, not-found, quota-exceeded,
            unavailable, timeout, network, unknown-error
        status_code: HTTP status when the server answered, else None
    """

    def __init__(self, message: str, code: str, status_code: int | None = None) -> None:
        super().__init__(message, code)
        self.status_code = status_code


def validate_user_id(user_id: str) -> None:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidInputError("Invalid user ID provided")


def validate_sprint_id(sprint_id: str) -> None:
    if not isinstance(sprint_id, str) or not sprint_id.strip():
        raise InvalidInputError("Invalid sprint ID provided")


def validate_updates(updates: object) -> None:
    if not isinstance(updates, dict):
        raise InvalidInputError("Invalid updates provided")


def validate_sprint_title(title: str) -> None:
    if not title or not title.strip():
        raise InvalidInputError("Sprint title is required")


__all__ = [
    "CloudStoreError",
    "InvalidInputError",
    "RecordNotFoundError",
    "StorageCorruptedError",
    "StorageError",
    "validate_sprint_id",
    "validate_sprint_title",
    "validate_updates",
    "validate_user_id",
]
