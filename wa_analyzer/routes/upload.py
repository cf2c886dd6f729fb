from __future__ import annotations

from pathlib import PurePosixPath

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from wa_analyzer.application import UploadResult, WorkItemService
from wa_analyzer.config import get_settings
from wa_analyzer.core.packer import UploadedFile

from .dependencies import current_user_id, work_item_service

router = APIRouter(prefix="/work-items", tags=["upload"])


def _read_upload(upload: UploadFile, limit: int) -> UploadedFile:
    if not upload.filename:
        raise HTTPException(status_code=400, detail="Uploaded file must have a filename")
    # one byte past the limit is enough to know it is too large
    content = upload.file.read(limit + 1)
    if len(content) > limit:
        raise HTTPException(status_code=413, detail=f"{upload.filename} exceeds the {limit} byte limit")
    return UploadedFile(
        filename=upload.filename,
        content=content,
        content_type=upload.content_type or "application/octet-stream",
    )


def _upload_result(result: UploadResult) -> dict:
    return {
        "fileId": result.file_id,
        "tokenCount": result.token_count,
        "exceedsTokenLimit": result.exceeds_token_limit,
    }


@router.post("")
def upload_single_file(
    file: UploadFile = File(...),
    user_id: str = Depends(current_user_id),
    service: WorkItemService = Depends(work_item_service),
) -> dict:
    """Upload one IaC document or architecture diagram."""
    upload = _read_upload(file, get_settings().max_upload_bytes)
    work_item = service.create_work_item(
        user_id,
        PurePosixPath(upload.filename).name,
        upload.content_type or "application/octet-stream",
        upload.content,
    )
    return work_item.to_record()


@router.post("/multiple")
def upload_multiple_files(
    files: list[UploadFile] = File(...),
    user_id: str = Depends(current_user_id),
    service: WorkItemService = Depends(work_item_service),
) -> dict:
    """Upload several related files that are analysed together."""
    if not files:
        raise HTTPException(status_code=400, detail="At least one file must be provided")
    limit = get_settings().max_upload_bytes
    uploads = [_read_upload(upload, limit) for upload in files]
    return _upload_result(service.handle_multiple_files_upload(user_id, uploads))


@router.post("/zip")
def upload_zip_file(
    file: UploadFile = File(...),
    user_id: str = Depends(current_user_id),
    service: WorkItemService = Depends(work_item_service),
) -> dict:
    """Upload a whole project as a zip archive."""
    upload = _read_upload(file, get_settings().max_upload_bytes)
    return _upload_result(
        service.handle_zip_upload(user_id, PurePosixPath(upload.filename).name, upload.content)
    )


@router.post("/{file_id}/supporting-document")
def upload_supporting_document(
    file_id: str,
    file: UploadFile = File(...),
    description: str = Form(...),
    user_id: str = Depends(current_user_id),
    service: WorkItemService = Depends(work_item_service),
) -> dict:
    upload = _read_upload(file, get_settings().max_supporting_document_bytes)
    document_id = service.store_supporting_document(
        user_id,
        file_id,
        PurePosixPath(upload.filename).name,
        upload.content_type or "application/octet-stream",
        upload.content,
        description,
    )
    return {"supportingDocumentId": document_id}
