"""Application services."""

from .work_items import (
    ContentPayload,
    SupportingDocument,
    UploadResult,
    WorkItemService,
    build_work_item_service,
    get_work_item_service,
    reset_work_item_service,
)

__all__ = [
    "ContentPayload",
    "SupportingDocument",
    "UploadResult",
    "WorkItemService",
    "build_work_item_service",
    "get_work_item_service",
    "reset_work_item_service",
]
