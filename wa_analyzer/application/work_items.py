"""Application service layer for work-item storage orchestration."""
from __future__ import annotations

import base64
import binascii
import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping, Sequence

from wa_analyzer.config import Settings, get_settings
from wa_analyzer.core import hashing
from wa_analyzer.core.keys import (
    extension_for_template_type,
    iac_document_key,
    storage_locations,
    storage_prefix,
    supporting_document_key,
    supporting_document_metadata_key,
)
from wa_analyzer.core.packer import ContentPacker, PackedProject, UploadedFile
from wa_analyzer.domain.errors import (
    ConditionFailedError,
    InvalidStatusTransitionError,
    NotFoundError,
    PackingError,
    StorageDisabledError,
    UpstreamError,
    ValidationMismatchError,
    WorkItemStorageError,
)
from wa_analyzer.domain.work_items import (
    ProcessingStatus,
    StatusTrack,
    UploadMode,
    WorkItem,
    WorkItemUpdate,
    allowed_sources,
    can_transition,
)
from wa_analyzer.infrastructure import (
    DynamoDBWorkItemRepository,
    InMemoryObjectStore,
    InMemoryWorkItemRepository,
    ObjectStore,
    S3ObjectStore,
    WorkItemRepository,
    create_client,
)

from .saga import Saga

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
PACKED_CONTENT_TYPE = "text/plain"
ZIP_CONTENT_TYPE = "application/zip"
MULTIPLE_FILES_CONTENT_TYPE = "application/multiple-files"
IAC_CONTENT_TYPES = {"yaml": "application/x-yaml", "yml": "application/x-yaml", "json": JSON_CONTENT_TYPE}
PACKED_UPLOAD_MODES = frozenset({UploadMode.MULTIPLE_FILES, UploadMode.ZIP_FILE})


@dataclass(slots=True)
class UploadResult:
    file_id: str
    token_count: int
    exceeds_token_limit: bool


@dataclass(slots=True)
class ContentPayload:
    """Content as handed back to callers: raw bytes, text or a data URI."""

    data: bytes | str
    content_type: str


@dataclass(slots=True)
class SupportingDocument:
    data: bytes
    content_type: str
    file_name: str


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def combined_file_name(files: Sequence[UploadedFile]) -> str:
    if len(files) < 2:
        return files[0].filename
    return f"{files[0].filename}_and_{len(files) - 1}_more_files"


@contextmanager
def _upstream(message: str) -> Iterator[None]:
    """Re-raise store failures under a stable, operation-specific message."""

    try:
        yield
    except UpstreamError as exc:
        raise UpstreamError(message, transient=exc.transient) from exc


class WorkItemService:
    """Coordinates the metadata table and the object store for work items."""

    def __init__(
        self,
        repository: WorkItemRepository,
        object_store: ObjectStore,
        packer: ContentPacker,
        *,
        enabled: bool = True,
    ) -> None:
        self._repository = repository
        self._objects = object_store
        self._packer = packer
        self._enabled = enabled

    create_user_id_hash = staticmethod(hashing.create_user_id_hash)

    def _ensure_enabled(self) -> None:
        if not self._enabled:
            raise StorageDisabledError()

    # ------------------------------------------------------------------
    # creation
    # ------------------------------------------------------------------
    def create_work_item(
        self,
        user_id: str,
        file_name: str,
        file_type: str,
        content: bytes | str,
        upload_mode: UploadMode = UploadMode.SINGLE_FILE,
    ) -> WorkItem:
        self._ensure_enabled()
        data = self._encode_content(content, file_type)
        work_item = self._new_work_item(user_id, file_name, file_type, upload_mode)
        self._persist_new_work_item(work_item, data, file_type)
        return work_item

    def handle_zip_upload(self, user_id: str, filename: str, data: bytes) -> UploadResult:
        self._ensure_enabled()
        packed = self._packer.process_zip_file(data, filename)
        work_item = self._new_work_item(user_id, filename, ZIP_CONTENT_TYPE, UploadMode.ZIP_FILE, packed)
        self._persist_new_work_item(work_item, data, ZIP_CONTENT_TYPE, packed.packed_content)
        return UploadResult(work_item.file_id, packed.token_count, packed.exceeds_token_limit)

    def handle_multiple_files_upload(self, user_id: str, files: Sequence[UploadedFile]) -> UploadResult:
        self._ensure_enabled()
        if not files:
            raise PackingError("No files were provided")
        packed = self._packer.process_multiple_files(files)
        archive = self._packer.create_zip_from_files(files)
        work_item = self._new_work_item(
            user_id,
            combined_file_name(files),
            MULTIPLE_FILES_CONTENT_TYPE,
            UploadMode.MULTIPLE_FILES,
            packed,
            id_source=files[0].filename,
        )
        self._persist_new_work_item(work_item, archive, ZIP_CONTENT_TYPE, packed.packed_content)
        return UploadResult(work_item.file_id, packed.token_count, packed.exceeds_token_limit)

    def _new_work_item(
        self,
        user_id: str,
        file_name: str,
        file_type: str,
        upload_mode: UploadMode,
        packed: PackedProject | None = None,
        *,
        id_source: str | None = None,
    ) -> WorkItem:
        file_id = hashing.create_file_id_hash(id_source or file_name)
        timestamp = utc_now()
        return WorkItem(
            user_id=user_id,
            file_id=file_id,
            file_name=file_name,
            file_type=file_type,
            upload_mode=upload_mode,
            upload_date=timestamp,
            last_modified=timestamp,
            s3_prefix=storage_prefix(user_id, file_id),
            token_count=packed.token_count if packed else None,
            exceeds_token_limit=packed.exceeds_token_limit if packed else None,
        )

    def _persist_new_work_item(
        self,
        work_item: WorkItem,
        content: bytes,
        content_type: str,
        packed_content: str | None = None,
    ) -> None:
        user_id, file_id = work_item.user_id, work_item.file_id
        locations = storage_locations(user_id, file_id)
        record = work_item.to_record()
        snapshot = json.dumps(record).encode("utf-8")

        saga = Saga(f"create work item {file_id}")
        try:
            saga.run(
                "metadata record",
                lambda: self._repository.put(record),
                lambda: self._repository.delete(user_id, file_id),
            )
            saga.run(
                "original content",
                lambda: self._objects.put(locations.original_content, content, content_type),
                lambda: self._objects.delete(locations.original_content),
            )
            saga.run(
                "metadata snapshot",
                lambda: self._objects.put(locations.metadata, snapshot, JSON_CONTENT_TYPE),
                lambda: self._objects.delete(locations.metadata),
            )
            if packed_content is not None:
                saga.run(
                    "packed content",
                    lambda: self._objects.put(
                        locations.packed_content, packed_content.encode("utf-8"), PACKED_CONTENT_TYPE
                    ),
                    lambda: self._objects.delete(locations.packed_content),
                )
        except WorkItemStorageError as exc:
            leftovers = saga.compensate()
            if leftovers:
                logger.error(
                    "Work item %s/%s left partially written, manual cleanup needed for: %s",
                    user_id,
                    file_id,
                    ", ".join(leftovers),
                )
            raise UpstreamError("Failed to create work item", transient=getattr(exc, "transient", False)) from exc

        logger.info("Created work item %s for user %s (%s)", file_id, user_id, work_item.upload_mode.value)

    # ------------------------------------------------------------------
    # metadata
    # ------------------------------------------------------------------
    def get_work_item(self, user_id: str, file_id: str) -> WorkItem:
        self._ensure_enabled()
        with _upstream("Failed to get work item"):
            record = self._repository.get(user_id, file_id)
        return WorkItem.from_record(record)

    def list_work_items(self, user_id: str) -> list[WorkItem]:
        self._ensure_enabled()
        with _upstream("Failed to list work items"):
            records = self._repository.query(user_id)
        return [WorkItem.from_record(record) for record in records]

    def update_work_item(self, user_id: str, file_id: str, update: WorkItemUpdate) -> WorkItem:
        """Apply the fields set on ``update`` and return the stored result.

        Status changes are checked against the lifecycle and enforced with a
        conditional write, so a concurrent writer cannot slip an illegal
        transition in between.
        """

        self._ensure_enabled()
        attributes = update.to_attributes()
        if "tokenCount" in attributes:
            attributes["exceedsTokenLimit"] = self._packer.exceeds_token_limit(attributes["tokenCount"])
        changes = update.status_changes()
        unreachable = [track for track, target in changes.items() if not allowed_sources(target)]
        if unreachable:
            current = self.get_work_item(user_id, file_id)
            track = unreachable[0]
            raise InvalidStatusTransitionError(
                track.status_attribute, getattr(current, track.status_field).value, changes[track].value
            )
        conditions = {
            track.status_attribute: {status.value for status in allowed_sources(target)}
            for track, target in changes.items()
        }
        return self._apply_update(user_id, file_id, attributes, changes=changes, conditions=conditions)

    def reset_status(self, user_id: str, file_id: str, track: StatusTrack) -> WorkItem:
        """Put one lifecycle track back to NOT_STARTED with zero progress."""

        self._ensure_enabled()
        attributes = {
            track.status_attribute: ProcessingStatus.NOT_STARTED.value,
            track.progress_attribute: 0,
        }
        return self._apply_update(user_id, file_id, attributes)

    def _apply_update(
        self,
        user_id: str,
        file_id: str,
        attributes: Mapping[str, Any],
        *,
        changes: Mapping[StatusTrack, ProcessingStatus] | None = None,
        conditions: Mapping[str, set[str]] | None = None,
    ) -> WorkItem:
        attributes = {**attributes, "lastModified": utc_now()}
        try:
            record = self._repository.update(user_id, file_id, attributes, conditions=conditions or None)
        except ConditionFailedError as exc:
            current = self.get_work_item(user_id, file_id)
            for track, target in (changes or {}).items():
                status = getattr(current, track.status_field)
                if not can_transition(status, target):
                    raise InvalidStatusTransitionError(track.status_attribute, status.value, target.value) from exc
            # the record moved on to a state the update is legal from
            raise UpstreamError("Failed to update work item", transient=True) from exc
        except UpstreamError as exc:
            raise UpstreamError("Failed to update work item", transient=exc.transient) from exc
        return WorkItem.from_record(record)

    # ------------------------------------------------------------------
    # deletion
    # ------------------------------------------------------------------
    def delete_work_item(self, user_id: str, file_id: str) -> None:
        """Remove every stored object of the item, then its metadata.

        Safe to call again after a partial failure: missing objects and a
        missing record are both treated as already deleted.
        """

        self._ensure_enabled()
        locations = storage_locations(user_id, file_id)
        with _upstream("Failed to delete work item"):
            keys = self._objects.list_keys(locations.listing_prefix)
            if keys:
                self._objects.delete_many(keys)
            self._repository.delete(user_id, file_id)
        logger.info("Deleted work item %s for user %s (%d objects)", file_id, user_id, len(keys))

    # ------------------------------------------------------------------
    # original and packed content
    # ------------------------------------------------------------------
    @staticmethod
    def _encode_content(content: bytes | str, file_type: str) -> bytes:
        if isinstance(content, (bytes, bytearray)):
            return bytes(content)
        if file_type.startswith("image/"):
            # data URI or bare base64 string
            encoded = content.split(";base64,", 1)[1] if ";base64," in content else content
            try:
                return base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValueError("Image content is not valid base64") from exc
        return content.encode("utf-8")

    def store_original_content(self, user_id: str, file_id: str, content: bytes | str, file_type: str) -> None:
        self._ensure_enabled()
        data = self._encode_content(content, file_type)
        with _upstream("Failed to store original content"):
            self._objects.put(storage_locations(user_id, file_id).original_content, data, file_type)

    def get_original_content(self, user_id: str, file_id: str, for_download: bool = False) -> ContentPayload:
        """Return the uploaded content.

        Downloads always get the raw bytes. In-app reads of multi-file and
        archive uploads get the packed text, or the original archive when the
        packed copy is missing. Images are returned as data URIs and anything
        else as UTF-8 text.
        """

        self._ensure_enabled()
        work_item = self.get_work_item(user_id, file_id)

        if not for_download and work_item.upload_mode in PACKED_UPLOAD_MODES:
            try:
                return ContentPayload(self.get_packed_content(user_id, file_id), PACKED_CONTENT_TYPE)
            except NotFoundError:
                logger.warning("Packed content not found for %s, falling back to original content", file_id)

        with _upstream("Failed to get original content"):
            stored = self._objects.get(storage_locations(user_id, file_id).original_content)

        if for_download:
            return ContentPayload(stored.data, stored.content_type)
        if stored.content_type.startswith("image/"):
            encoded = base64.b64encode(stored.data).decode("ascii")
            return ContentPayload(f"data:{stored.content_type};base64,{encoded}", stored.content_type)
        return ContentPayload(stored.data.decode("utf-8", errors="replace"), stored.content_type)

    def store_packed_content(self, user_id: str, file_id: str, content: str) -> None:
        self._ensure_enabled()
        with _upstream("Failed to store packed content"):
            self._objects.put(
                storage_locations(user_id, file_id).packed_content,
                content.encode("utf-8"),
                PACKED_CONTENT_TYPE,
            )

    def get_packed_content(self, user_id: str, file_id: str) -> str:
        self._ensure_enabled()
        with _upstream("Failed to get packed content"):
            stored = self._objects.get(storage_locations(user_id, file_id).packed_content)
        return stored.data.decode("utf-8")

    # ------------------------------------------------------------------
    # analysis results and generated IaC
    # ------------------------------------------------------------------
    def store_analysis_results(self, user_id: str, file_id: str, results: Any) -> None:
        self._ensure_enabled()
        payload = json.dumps(results).encode("utf-8")
        with _upstream("Failed to store analysis results"):
            self._objects.put(storage_locations(user_id, file_id).analysis_results, payload, JSON_CONTENT_TYPE)

    def get_analysis_results(self, user_id: str, file_id: str) -> Any:
        self._ensure_enabled()
        with _upstream("Failed to get analysis results"):
            stored = self._objects.get(storage_locations(user_id, file_id).analysis_results)
        return json.loads(stored.data.decode("utf-8"))

    def store_iac_document(
        self,
        user_id: str,
        file_id: str,
        content: str,
        extension: str,
        template_type: str | None = None,
    ) -> None:
        self._ensure_enabled()
        key = iac_document_key(user_id, file_id, extension)
        content_type = IAC_CONTENT_TYPES.get(extension.lstrip(".").lower(), PACKED_CONTENT_TYPE)
        with _upstream("Failed to store IaC document"):
            self._objects.put(key, content.encode("utf-8"), content_type)
        if template_type:
            self._apply_update(user_id, file_id, {"iacGeneratedFileType": template_type})

    def get_iac_document(
        self,
        user_id: str,
        file_id: str,
        extension: str | None = None,
        work_item: WorkItem | None = None,
    ) -> str:
        """Fetch the generated template.

        The work item's recorded template type decides the extension when it
        has one; ``extension`` is used otherwise.
        """

        self._ensure_enabled()
        work_item = work_item or self.get_work_item(user_id, file_id)
        if work_item.iac_generated_file_type:
            extension = extension_for_template_type(work_item.iac_generated_file_type)
        if not extension:
            raise ValueError("No extension given and the work item has no generated template type")
        with _upstream("Failed to get IaC document"):
            stored = self._objects.get(iac_document_key(user_id, file_id, extension))
        return stored.data.decode("utf-8")

    # ------------------------------------------------------------------
    # supporting documents
    # ------------------------------------------------------------------
    def store_supporting_document(
        self,
        user_id: str,
        main_file_id: str,
        file_name: str,
        file_type: str,
        content: bytes,
        description: str,
    ) -> str:
        """Store a supporting document and link it to the main work item.

        Only one document is linked at a time. The previously linked
        document's blob and sidecar are removed once the new link is in
        place.
        """

        self._ensure_enabled()
        current = self.get_work_item(user_id, main_file_id)
        document_id = hashing.create_supporting_document_id(main_file_id, file_name)
        document_key = supporting_document_key(user_id, main_file_id, document_id)
        metadata_key = supporting_document_metadata_key(user_id, main_file_id, document_id)
        timestamp = utc_now()
        sidecar = {
            "userId": user_id,
            "fileId": document_id,
            "mainFileId": main_file_id,
            "fileName": file_name,
            "fileType": file_type,
            "uploadDate": timestamp,
            "lastModified": timestamp,
            "description": description,
            "type": "supporting-document",
        }

        saga = Saga(f"link supporting document {document_id}")
        try:
            saga.run(
                "supporting document",
                lambda: self._objects.put(document_key, content, file_type),
                lambda: self._objects.delete(document_key),
            )
            saga.run(
                "supporting document metadata",
                lambda: self._objects.put(metadata_key, json.dumps(sidecar).encode("utf-8"), JSON_CONTENT_TYPE),
                lambda: self._objects.delete(metadata_key),
            )
            saga.run(
                "work item link",
                lambda: self._apply_update(
                    user_id,
                    main_file_id,
                    {
                        "supportingDocumentId": document_id,
                        "supportingDocumentAdded": True,
                        "supportingDocumentName": file_name,
                        "supportingDocumentType": file_type,
                        "supportingDocumentDescription": description,
                    },
                ),
            )
        except WorkItemStorageError as exc:
            saga.compensate()
            if isinstance(exc, NotFoundError):
                raise
            raise UpstreamError(
                "Failed to store supporting document", transient=getattr(exc, "transient", False)
            ) from exc

        previous_id = current.supporting_document_id if current.has_supporting_document else None
        if previous_id and previous_id != document_id:
            self._discard_supporting_document(user_id, main_file_id, previous_id)
        logger.info("Linked supporting document %s to work item %s", document_id, main_file_id)
        return document_id

    def _discard_supporting_document(self, user_id: str, main_file_id: str, document_id: str) -> None:
        keys = [
            supporting_document_key(user_id, main_file_id, document_id),
            supporting_document_metadata_key(user_id, main_file_id, document_id),
        ]
        try:
            self._objects.delete_many(keys)
        except UpstreamError as exc:
            # the new link is already committed; the old blob stays behind
            logger.warning("Could not remove superseded supporting document %s: %s", document_id, exc)

    def get_supporting_document(self, user_id: str, main_file_id: str, supporting_document_id: str) -> SupportingDocument:
        self._ensure_enabled()
        work_item = self.get_work_item(user_id, main_file_id)
        if not work_item.has_supporting_document:
            raise ValidationMismatchError("No supporting document available for this work item")
        if work_item.supporting_document_id != supporting_document_id:
            raise ValidationMismatchError("Supporting document ID does not match the work item record")

        with _upstream("Failed to get supporting document"):
            stored = self._objects.get(supporting_document_key(user_id, main_file_id, supporting_document_id))
        return SupportingDocument(
            data=stored.data,
            content_type=stored.content_type,
            file_name=work_item.supporting_document_name or "supporting-document",
        )


def build_work_item_service(settings: Settings | None = None) -> WorkItemService:
    settings = settings or get_settings()
    packer = ContentPacker(settings.token_limit, max_file_bytes=settings.max_upload_bytes)
    if settings.storage_backend == "memory" or not settings.storage_enabled:
        repository: WorkItemRepository = InMemoryWorkItemRepository()
        objects: ObjectStore = InMemoryObjectStore()
    else:
        repository = DynamoDBWorkItemRepository(settings.storage_table, create_client("dynamodb", settings))
        objects = S3ObjectStore(settings.storage_bucket, create_client("s3", settings))
    return WorkItemService(repository, objects, packer, enabled=settings.storage_enabled)


_service: WorkItemService | None = None
_service_lock = threading.Lock()


def get_work_item_service() -> WorkItemService:
    """Return the process-wide work item service, building it on first use."""

    global _service
    with _service_lock:
        if _service is None:
            _service = build_work_item_service()
        return _service


def reset_work_item_service() -> None:
    """Drop the cached service (used in tests)."""

    global _service
    with _service_lock:
        _service = None
