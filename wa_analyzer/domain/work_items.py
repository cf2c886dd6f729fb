"""Domain entities for analysis work items."""
from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from wa_analyzer.core.keys import storage_prefix


class UploadMode(str, Enum):
    SINGLE_FILE = "SINGLE_FILE"
    MULTIPLE_FILES = "MULTIPLE_FILES"
    ZIP_FILE = "ZIP_FILE"


class ProcessingStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Returning to NOT_STARTED is only possible through an explicit reset.
ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.NOT_STARTED: frozenset({ProcessingStatus.IN_PROGRESS}),
    ProcessingStatus.IN_PROGRESS: frozenset(
        {ProcessingStatus.IN_PROGRESS, ProcessingStatus.COMPLETED, ProcessingStatus.FAILED}
    ),
    ProcessingStatus.COMPLETED: frozenset({ProcessingStatus.IN_PROGRESS}),
    ProcessingStatus.FAILED: frozenset({ProcessingStatus.IN_PROGRESS}),
}


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def allowed_sources(target: ProcessingStatus) -> frozenset[ProcessingStatus]:
    """Statuses from which ``target`` may be reached."""

    return frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets)


class StatusTrack(str, Enum):
    """The two independent lifecycles tracked on every work item."""

    ANALYSIS = "analysis"
    IAC_GENERATION = "iac_generation"

    @property
    def status_field(self) -> str:
        return f"{self.value}_status"

    @property
    def progress_field(self) -> str:
        return f"{self.value}_progress"

    @property
    def status_attribute(self) -> str:
        return UPDATABLE_ATTRIBUTES[self.status_field]

    @property
    def progress_attribute(self) -> str:
        return UPDATABLE_ATTRIBUTES[self.progress_field]


class WorkItem(BaseModel):
    """Persisted record of one uploaded analysis job.

    Stored under partition key ``userId`` and sort key ``fileId``; attribute
    names on the wire are the camelCase aliases of the fields below.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    file_id: str
    file_name: str
    file_type: str
    upload_mode: UploadMode = UploadMode.SINGLE_FILE
    analysis_status: ProcessingStatus = ProcessingStatus.NOT_STARTED
    analysis_progress: int = Field(default=0, ge=0, le=100)
    iac_generation_status: ProcessingStatus = ProcessingStatus.NOT_STARTED
    iac_generation_progress: int = Field(default=0, ge=0, le=100)
    token_count: int | None = Field(default=None, ge=0)
    exceeds_token_limit: bool | None = None
    supporting_document_id: str | None = None
    supporting_document_added: bool | None = None
    supporting_document_name: str | None = None
    supporting_document_type: str | None = None
    supporting_document_description: str | None = None
    iac_generated_file_type: str | None = None
    upload_date: str
    last_modified: str
    s3_prefix: str

    @model_validator(mode="after")
    def _check_prefix(self) -> "WorkItem":
        expected = storage_prefix(self.user_id, self.file_id)
        if self.s3_prefix != expected:
            raise ValueError(f"s3Prefix {self.s3_prefix!r} does not match {expected!r}")
        return self

    @property
    def has_supporting_document(self) -> bool:
        return bool(self.supporting_document_added and self.supporting_document_id)

    def to_record(self) -> dict[str, Any]:
        """Serialise for storage, omitting unset optional attributes."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "WorkItem":
        return cls.model_validate(record)


# Field -> stored attribute for everything a partial update may touch.
UPDATABLE_ATTRIBUTES: dict[str, str] = {
    "file_name": "fileName",
    "file_type": "fileType",
    "analysis_status": "analysisStatus",
    "analysis_progress": "analysisProgress",
    "iac_generation_status": "iacGenerationStatus",
    "iac_generation_progress": "iacGenerationProgress",
    "token_count": "tokenCount",
    "supporting_document_id": "supportingDocumentId",
    "supporting_document_added": "supportingDocumentAdded",
    "supporting_document_name": "supportingDocumentName",
    "supporting_document_type": "supportingDocumentType",
    "supporting_document_description": "supportingDocumentDescription",
    "iac_generated_file_type": "iacGeneratedFileType",
}

# Attributes the service stamps itself on every write.
DERIVED_ATTRIBUTES = frozenset({"lastModified", "exceedsTokenLimit"})

MUTABLE_ATTRIBUTES = frozenset(UPDATABLE_ATTRIBUTES.values()) | DERIVED_ATTRIBUTES


class WorkItemUpdate(BaseModel):
    """Partial update of a work item.

    Only fields that were explicitly given a non-null value are written;
    everything else on the stored record is left untouched.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    file_name: str | None = None
    file_type: str | None = None
    analysis_status: ProcessingStatus | None = None
    analysis_progress: int | None = Field(default=None, ge=0, le=100)
    iac_generation_status: ProcessingStatus | None = None
    iac_generation_progress: int | None = Field(default=None, ge=0, le=100)
    token_count: int | None = Field(default=None, ge=0)
    supporting_document_id: str | None = None
    supporting_document_added: bool | None = None
    supporting_document_name: str | None = None
    supporting_document_type: str | None = None
    supporting_document_description: str | None = None
    iac_generated_file_type: str | None = None

    def status_changes(self) -> dict[StatusTrack, ProcessingStatus]:
        changes: dict[StatusTrack, ProcessingStatus] = {}
        for track in StatusTrack:
            value = getattr(self, track.status_field)
            if value is not None:
                changes[track] = value
        return changes

    def to_attributes(self) -> dict[str, Any]:
        attributes: dict[str, Any] = {}
        for name in sorted(self.model_fields_set):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            attributes[UPDATABLE_ATTRIBUTES[name]] = value
        return attributes
