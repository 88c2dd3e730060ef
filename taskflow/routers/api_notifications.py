from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_current_user_api
from ..db import get_db
from ..notifications import count_unread, list_notifications, mark_read
from ..schemas import MarkReadRequest, NotificationOut

router = APIRouter()


@router.get("/", response_model=list[NotificationOut])
def api_list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    return list_notifications(db, user_email=current_user, unread_only=unread_only, limit=limit)


@router.get("/unread-count")
def api_unread_count(
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    return {"unread": count_unread(db, user_email=current_user)}


@router.post("/read")
def api_mark_read(
    payload: MarkReadRequest | None = None,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    updated = mark_read(db, user_email=current_user, ids=(payload.ids if payload else None))
    return {"updated": updated}
