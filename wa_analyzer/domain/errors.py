"""Typed failures raised by the work-item storage layer."""
from __future__ import annotations


class WorkItemStorageError(RuntimeError):
    """Base class for every failure surfaced by the storage subsystem."""


class StorageDisabledError(WorkItemStorageError):
    """Raised when storage is switched off in configuration."""

    def __init__(self, message: str = "Storage is not enabled") -> None:
        super().__init__(message)


class NotFoundError(WorkItemStorageError):
    pass


class WorkItemNotFoundError(NotFoundError):
    def __init__(self, user_id: str, file_id: str) -> None:
        super().__init__("Work item not found")
        self.user_id = user_id
        self.file_id = file_id


class ObjectNotFoundError(NotFoundError):
    def __init__(self, key: str) -> None:
        super().__init__("Stored object not found")
        self.key = key


class ValidationMismatchError(WorkItemStorageError):
    """A supplied reference does not match what the work item records."""


class InvalidStatusTransitionError(WorkItemStorageError):
    def __init__(self, field: str, current: str | None, requested: str) -> None:
        super().__init__(f"Cannot change {field} from {current or 'unset'} to {requested}")
        self.field = field
        self.current = current
        self.requested = requested


class UpstreamError(WorkItemStorageError):
    """A backing store call failed.

    ``transient`` is set for throttling, timeouts and server-side errors,
    where retrying the whole operation may succeed.
    """

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class ConditionFailedError(UpstreamError):
    """A conditional write was rejected by the metadata store."""

    def __init__(self, message: str = "Conditional update rejected") -> None:
        super().__init__(message, transient=False)


class PackingError(WorkItemStorageError):
    """An upload could not be turned into packed content."""
