from __future__ import annotations

from urllib.parse import quote

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from wa_analyzer.application import WorkItemService
from wa_analyzer.domain import StatusTrack, WorkItemUpdate

from .dependencies import current_user_id, work_item_service

router = APIRouter(prefix="/work-items", tags=["work-items"])


def _attachment(file_name: str) -> dict[str, str]:
    return {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(file_name)}"}


@router.get("")
def list_work_items(
    user_id: str = Depends(current_user_id),
    service: WorkItemService = Depends(work_item_service),
) -> dict:
    items = service.list_work_items(user_id)
    items.sort(key=lambda item: item.upload_date, reverse=True)
    return {"items": [item.to_record() for item in items]}


@router.get("/{file_id}")
def get_work_item(
    file_id: str,
    user_id: str = Depends(current_user_id),
    service: WorkItemService = Depends(work_item_service),
) -> dict:
    return service.get_work_item(user_id, file_id).to_record()


@router.patch("/{file_id}")
def update_work_item(
    file_id: str,
    payload: WorkItemUpdate,
    user_id: str = Depends(current_user_id),
    service: WorkItemService = Depends(work_item_service),
) -> dict:
    return service.update_work_item(user_id, file_id, payload).to_record()


@router.post("/{file_id}/reset/{track}")
def reset_work_item_status(
    file_id: str,
    track: StatusTrack,
    user_id: str = Depends(current_user_id),
    service: WorkItemService = Depends(work_item_service),
) -> dict:
    return service.reset_status(user_id, file_id, track).to_record()


@router.delete("/{file_id}")
def delete_work_item(
    file_id: str,
    user_id: str = Depends(current_user_id),
    service: WorkItemService = Depends(work_item_service),
) -> dict:
    service.delete_work_item(user_id, file_id)
    return {"fileId": file_id, "deleted": True}


@router.get("/{file_id}/content", response_model=None)
def get_work_item_content(
    file_id: str,
    download: bool = Query(default=False),
    user_id: str = Depends(current_user_id),
    service: WorkItemService = Depends(work_item_service),
) -> dict | Response:
    """Return uploaded content for viewing, or the raw upload for download."""
    payload = service.get_original_content(user_id, file_id, for_download=download)
    if download:
        work_item = service.get_work_item(user_id, file_id)
        return Response(
            content=payload.data,
            media_type=payload.content_type,
            headers=_attachment(work_item.file_name),
        )
    return {"data": payload.data, "contentType": payload.content_type}


@router.get("/{file_id}/supporting-document/{document_id}")
def get_supporting_document(
    file_id: str,
    document_id: str,
    user_id: str = Depends(current_user_id),
    service: WorkItemService = Depends(work_item_service),
) -> Response:
    document = service.get_supporting_document(user_id, file_id, document_id)
    return Response(
        content=document.data,
        media_type=document.content_type,
        headers=_attachment(document.file_name),
    )
