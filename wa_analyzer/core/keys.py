"""Object-store key layout for work items.

Every blob that belongs to a work item lives under ``{user_id}/{file_id}``.
Out-of-process tooling reads these keys directly, so the layout must not
change for existing items.
"""
from __future__ import annotations

from dataclasses import dataclass

METADATA_NAME = "metadata.json"
ORIGINAL_CONTENT_NAME = "original_content"
ANALYSIS_RESULTS_NAME = "analysis/analysis_results.json"
IAC_DOCUMENT_NAME = "iac_templates/generated_template"
PACKED_CONTENT_NAME = "packed_content"
SUPPORTING_DOCUMENTS_DIR = "supporting_documents"


@dataclass(frozen=True, slots=True)
class StorageLocations:
    """Resolved keys for a single work item."""

    prefix: str
    metadata: str
    original_content: str
    analysis_results: str
    iac_document: str
    packed_content: str
    supporting_documents: str

    @property
    def listing_prefix(self) -> str:
        """Prefix used to enumerate the item's objects (slash-terminated)."""

        return f"{self.prefix}/"


def _check_segment(name: str, value: str) -> str:
    if not value:
        raise ValueError(f"{name} must not be empty")
    if "/" in value:
        raise ValueError(f"{name} must not contain '/'")
    return value


def storage_prefix(user_id: str, file_id: str) -> str:
    return f"{_check_segment('user_id', user_id)}/{_check_segment('file_id', file_id)}"


def storage_locations(user_id: str, file_id: str) -> StorageLocations:
    prefix = storage_prefix(user_id, file_id)
    return StorageLocations(
        prefix=prefix,
        metadata=f"{prefix}/{METADATA_NAME}",
        original_content=f"{prefix}/{ORIGINAL_CONTENT_NAME}",
        analysis_results=f"{prefix}/{ANALYSIS_RESULTS_NAME}",
        iac_document=f"{prefix}/{IAC_DOCUMENT_NAME}",
        packed_content=f"{prefix}/{PACKED_CONTENT_NAME}",
        supporting_documents=f"{prefix}/{SUPPORTING_DOCUMENTS_DIR}",
    )


def iac_document_key(user_id: str, file_id: str, extension: str) -> str:
    extension = extension.lstrip(".")
    if not extension:
        raise ValueError("extension must not be empty")
    return f"{storage_locations(user_id, file_id).iac_document}.{extension}"


def supporting_document_key(user_id: str, file_id: str, document_id: str) -> str:
    base = storage_locations(user_id, file_id).supporting_documents
    return f"{base}/{_check_segment('document_id', document_id)}"


def supporting_document_metadata_key(user_id: str, file_id: str, document_id: str) -> str:
    return f"{supporting_document_key(user_id, file_id, document_id)}_{METADATA_NAME}"


def extension_for_template_type(template_type: str) -> str:
    """Map a generated template flavour to the extension it is stored under."""

    lowered = template_type.lower()
    if "yaml" in lowered:
        return "yaml"
    if "json" in lowered:
        return "json"
    return "tf"
