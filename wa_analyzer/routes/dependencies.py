from __future__ import annotations

from fastapi import Header, HTTPException

from wa_analyzer.application import WorkItemService, get_work_item_service
from wa_analyzer.core.hashing import create_user_id_hash


def current_user_id(x_user_email: str = Header(default="")) -> str:
    """Derive the caller's user id from the authenticated email header."""

    if not x_user_email.strip():
        raise HTTPException(status_code=401, detail="X-User-Email header is required")
    return create_user_id_hash(x_user_email)


def work_item_service() -> WorkItemService:
    return get_work_item_service()
