"""Blob storage for work-item content."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from wa_analyzer.domain.errors import ObjectNotFoundError, UpstreamError

from .aws import error_code, upstream_error

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DELETE_BATCH_SIZE = 1000
MISSING_KEY_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


@dataclass(slots=True)
class StoredObject:
    data: bytes
    content_type: str


class ObjectStore(Protocol):
    """Persistence contract for byte blobs addressed by key."""

    def put(self, key: str, data: bytes, content_type: str) -> None: ...

    def get(self, key: str) -> StoredObject: ...

    def list_keys(self, prefix: str) -> list[str]: ...

    def delete_many(self, keys: Sequence[str]) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryObjectStore:
    """Dictionary-backed store for local runs and tests."""

    def __init__(self) -> None:
        self._objects: dict[str, StoredObject] = {}

    def put(self, key: str, data: bytes, content_type: str) -> None:
        self._objects[key] = StoredObject(data=bytes(data), content_type=content_type or DEFAULT_CONTENT_TYPE)

    def get(self, key: str) -> StoredObject:
        stored = self._objects.get(key)
        if stored is None:
            raise ObjectNotFoundError(key)
        return StoredObject(data=stored.data, content_type=stored.content_type)

    def list_keys(self, prefix: str) -> list[str]:
        return sorted(key for key in self._objects if key.startswith(prefix))

    def delete_many(self, keys: Sequence[str]) -> None:
        for key in keys:
            self._objects.pop(key, None)

    def delete(self, key: str) -> None:
        self._objects.pop(key, None)

    def reset(self) -> None:
        self._objects.clear()


class S3ObjectStore:
    """Object store backed by a single S3 bucket."""

    def __init__(self, bucket: str, client: Any) -> None:
        if not bucket:
            raise ValueError("bucket must be configured for the S3 object store")
        self._bucket = bucket
        self._client = client

    def put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type or DEFAULT_CONTENT_TYPE,
            )
        except (ClientError, BotoCoreError) as exc:
            raise upstream_error(f"Failed to write s3://{self._bucket}/{key}", exc) from exc

    def get(self, key: str) -> StoredObject:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            data = response["Body"].read()
        except ClientError as exc:
            if error_code(exc) in MISSING_KEY_CODES:
                raise ObjectNotFoundError(key) from exc
            raise upstream_error(f"Failed to read s3://{self._bucket}/{key}", exc) from exc
        except BotoCoreError as exc:
            raise upstream_error(f"Failed to read s3://{self._bucket}/{key}", exc) from exc
        return StoredObject(data=data, content_type=response.get("ContentType") or DEFAULT_CONTENT_TYPE)

    def list_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except (ClientError, BotoCoreError) as exc:
            raise upstream_error(f"Failed to list s3://{self._bucket}/{prefix}", exc) from exc
        return keys

    def delete_many(self, keys: Sequence[str]) -> None:
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            try:
                response = self._client.delete_objects(
                    Bucket=self._bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as exc:
                raise upstream_error(f"Failed to delete {len(batch)} object(s) from s3://{self._bucket}", exc) from exc

            errors = response.get("Errors") or []
            if errors:
                logger.error("S3 refused to delete %d object(s): %s", len(errors), errors)
                raise UpstreamError(f"Failed to delete {len(errors)} object(s) from s3://{self._bucket}")

    def delete(self, key: str) -> None:
        self.delete_many([key])
