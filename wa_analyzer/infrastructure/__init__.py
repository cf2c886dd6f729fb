"""Infrastructure layer exports."""

from .aws import create_client
from .object_store import InMemoryObjectStore, ObjectStore, S3ObjectStore, StoredObject
from .work_items import DynamoDBWorkItemRepository, InMemoryWorkItemRepository, WorkItemRepository

__all__ = [
    "DynamoDBWorkItemRepository",
    "InMemoryObjectStore",
    "InMemoryWorkItemRepository",
    "ObjectStore",
    "S3ObjectStore",
    "StoredObject",
    "WorkItemRepository",
    "create_client",
]
