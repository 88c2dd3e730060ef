from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth import get_clock, get_current_user_api, get_notification_sink
from ..crud import normalize_email
from ..db import get_db
from ..delegation import (
    RequestConflictError,
    accept_request,
    create_request,
    decline_request,
    get_request,
    list_inbox,
    list_outbox,
    set_request_archived,
)
from ..models import TaskRequest
from ..notifications import NotificationSink
from ..schemas import AcceptResponse, DeclineRequest, TaskRequestCreate, TaskRequestOut, task_out
from ..utils.time_utils import Clock


router = APIRouter()


def _load_request(db: Session, request_id: int, current_user: str) -> TaskRequest:
    req = get_request(db, request_id=request_id)
    if not req:
        raise HTTPException(status_code=404, detail="Request not found")
    if current_user not in {normalize_email(req.from_user), normalize_email(req.to_user)}:
        raise HTTPException(status_code=403, detail="Not allowed")
    return req


@router.get("/inbox", response_model=list[TaskRequestOut])
def api_inbox(
    status: str | None = Query(default=None, description="pending/accepted/declined"),
    include_archived: bool = Query(default=False),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    try:
        return list_inbox(db, user_email=current_user, status=status, include_archived=include_archived)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/outbox", response_model=list[TaskRequestOut])
def api_outbox(
    status: str | None = Query(default=None, description="pending/accepted/declined"),
    include_archived: bool = Query(default=False),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    try:
        return list_outbox(db, user_email=current_user, status=status, include_archived=include_archived)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/", response_model=TaskRequestOut)
def api_create_request(
    payload: TaskRequestCreate,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    sink: NotificationSink = Depends(get_notification_sink),
    clock: Clock = Depends(get_clock),
):
    try:
        return create_request(
            db,
            from_user=current_user,
            to_user=payload.to_user,
            title=payload.title,
            description=payload.description,
            priority=payload.priority,
            due_date=payload.due_date,
            sink=sink,
            when_utc=clock.now_utc_naive(),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{request_id}", response_model=TaskRequestOut)
def api_get_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    return _load_request(db, request_id, current_user)


@router.post("/{request_id}/accept", response_model=AcceptResponse)
def api_accept_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    sink: NotificationSink = Depends(get_notification_sink),
    clock: Clock = Depends(get_clock),
):
    req = _load_request(db, request_id, current_user)
    try:
        req, task = accept_request(db, request=req, current_user=current_user, sink=sink, when_utc=clock.now_utc_naive())
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except RequestConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return AcceptResponse(request=TaskRequestOut.model_validate(req), task=task_out(task, clock.now()))


@router.post("/{request_id}/decline", response_model=TaskRequestOut)
def api_decline_request(
    request_id: int,
    payload: DeclineRequest | None = None,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    sink: NotificationSink = Depends(get_notification_sink),
    clock: Clock = Depends(get_clock),
):
    req = _load_request(db, request_id, current_user)
    try:
        return decline_request(
            db,
            request=req,
            current_user=current_user,
            reason=(payload.reason if payload else None),
            sink=sink,
            when_utc=clock.now_utc_naive(),
        )
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except RequestConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{request_id}/archive")
def api_archive_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    req = _load_request(db, request_id, current_user)
    changed = set_request_archived(db, request=req, current_user=current_user, archived=True)
    return {"archived": True, "changed": changed}


@router.post("/{request_id}/unarchive")
def api_unarchive_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    req = _load_request(db, request_id, current_user)
    changed = set_request_archived(db, request=req, current_user=current_user, archived=False)
    return {"archived": False, "changed": changed}
