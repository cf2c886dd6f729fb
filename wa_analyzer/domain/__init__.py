"""Domain layer definitions."""

from .errors import (
    ConditionFailedError,
    InvalidStatusTransitionError,
    NotFoundError,
    ObjectNotFoundError,
    PackingError,
    StorageDisabledError,
    UpstreamError,
    ValidationMismatchError,
    WorkItemNotFoundError,
    WorkItemStorageError,
)
from .work_items import (
    MUTABLE_ATTRIBUTES,
    ProcessingStatus,
    StatusTrack,
    UploadMode,
    WorkItem,
    WorkItemUpdate,
    allowed_sources,
    can_transition,
)

__all__ = [
    "ConditionFailedError",
    "InvalidStatusTransitionError",
    "MUTABLE_ATTRIBUTES",
    "NotFoundError",
    "ObjectNotFoundError",
    "PackingError",
    "ProcessingStatus",
    "StatusTrack",
    "StorageDisabledError",
    "UploadMode",
    "UpstreamError",
    "ValidationMismatchError",
    "WorkItem",
    "WorkItemNotFoundError",
    "WorkItemStorageError",
    "WorkItemUpdate",
    "allowed_sources",
    "can_transition",
]
