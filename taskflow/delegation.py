from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from .crud import (
    EVENT_CREATED,
    archived_request_ids,
    normalize_email,
    publish_change,
    set_archived,
)
from .models import RequestStatus, Task, TaskRequest, TaskStatus, TaskType
from .notifications import (
    TYPE_REQUEST_ACCEPTED,
    TYPE_REQUEST_DECLINED,
    TYPE_TASK_REQUEST,
    NotificationEvent,
    NotificationSink,
    safe_emit,
    tasks_link,
)
from .priority import parse_priority
from .utils.time_utils import now_utc, parse_date


logger = logging.getLogger("taskflow.delegation")


class RequestConflictError(Exception):
    """The request already left `pending`; accept/decline are one-shot."""


def get_request(db: Session, *, request_id: int) -> Optional[TaskRequest]:
    return db.query(TaskRequest).filter(TaskRequest.id == int(request_id)).first()


def create_request(
    db: Session,
    *,
    from_user: str,
    to_user: str,
    title: str,
    description: str | None = None,
    priority: str | None = None,
    due_date=None,
    sink: NotificationSink | None = None,
    when_utc: datetime | None = None,
) -> TaskRequest:
    sender = normalize_email(from_user)
    recipient = normalize_email(to_user)
    if not sender or not recipient:
        raise ValueError("Both sender and recipient are required")
    name = str(title or "").strip()
    if not name:
        raise ValueError("Title is required")

    due = None
    if due_date not in (None, ""):
        d = parse_date(due_date)
        if d is None:
            raise ValueError(f"Invalid due date: {due_date!r}")
        due = d.isoformat()

    req = TaskRequest(
        from_user=sender,
        to_user=recipient,
        title=name,
        description=description,
        priority=parse_priority(priority).value,
        due_date=due,
        status=RequestStatus.pending.value,
        created_at=(when_utc or now_utc()).replace(tzinfo=None),
    )
    db.add(req)
    db.commit()
    db.refresh(req)

    safe_emit(
        sink,
        NotificationEvent(
            user_email=recipient,
            title="New Task Request",
            message=f'{sender} sent you a task request: "{name}"',
            link=tasks_link(),
            type=TYPE_TASK_REQUEST,
        ),
    )
    return req


def _require_recipient(req: TaskRequest, current_user: str) -> None:
    if normalize_email(current_user) != normalize_email(req.to_user):
        raise PermissionError("Only the recipient can respond to a request")


def _transition(db: Session, req: TaskRequest, values: dict) -> None:
    """Move a pending request forward; raises RequestConflictError if someone got there first."""
    result = db.execute(
        update(TaskRequest)
        .where(TaskRequest.id == int(req.id))
        .where(TaskRequest.status == RequestStatus.pending.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        db.rollback()
        db.refresh(req)
        raise RequestConflictError(f"Request {req.id} is already {req.status}")


def accept_request(
    db: Session,
    *,
    request: TaskRequest,
    current_user: str,
    sink: NotificationSink | None = None,
    when_utc: datetime | None = None,
) -> tuple[TaskRequest, Task]:
    """Accept a pending request, creating the recipient's task in the same transaction."""
    _require_recipient(request, current_user)
    when = (when_utc or now_utc()).replace(tzinfo=None)

    _transition(db, request, {"status": RequestStatus.accepted.value, "responded_at": when})

    task = Task(
        title=request.title,
        description=request.description,
        priority=parse_priority(request.priority).value,
        status=TaskStatus.pending.value,
        due_date=request.due_date,
        assigned_to=normalize_email(request.to_user),
        created_by=normalize_email(request.from_user),
        labels=[],
        subtasks=[],
        comments=[],
        attachments=[],
        reminders=[],
        task_type=TaskType.delegated.value,
    )
    db.add(task)
    db.flush()

    db.execute(
        update(TaskRequest)
        .where(TaskRequest.id == int(request.id))
        .values(task_id=int(task.id))
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(request)
    db.refresh(task)
    logger.info("Request %s accepted by %s; task %s created", request.id, request.to_user, task.id)

    publish_change(task, EVENT_CREATED)
    safe_emit(
        sink,
        NotificationEvent(
            user_email=request.from_user,
            title="Task Request Accepted",
            message=f'{request.to_user} accepted your task request: "{request.title}"',
            link=tasks_link(),
            task_id=int(task.id),
            type=TYPE_REQUEST_ACCEPTED,
        ),
    )
    return request, task


def decline_request(
    db: Session,
    *,
    request: TaskRequest,
    current_user: str,
    reason: str | None = None,
    sink: NotificationSink | None = None,
    when_utc: datetime | None = None,
) -> TaskRequest:
    _require_recipient(request, current_user)
    when = (when_utc or now_utc()).replace(tzinfo=None)
    why = (reason or "").strip() or None

    _transition(
        db,
        request,
        {"status": RequestStatus.declined.value, "decline_reason": why, "responded_at": when},
    )
    db.commit()
    db.refresh(request)
    logger.info("Request %s declined by %s", request.id, request.to_user)

    message = f'{request.to_user} declined your task request: "{request.title}"'
    if why:
        message += f" ({why})"
    safe_emit(
        sink,
        NotificationEvent(
            user_email=request.from_user,
            title="Task Request Declined",
            message=message,
            link=tasks_link(),
            type=TYPE_REQUEST_DECLINED,
        ),
    )
    return request


def set_request_archived(db: Session, *, request: TaskRequest, current_user: str, archived: bool = True) -> bool:
    """Hide or unhide a request for the current viewer only; status is untouched."""
    viewer = normalize_email(current_user)
    if viewer not in {normalize_email(request.from_user), normalize_email(request.to_user)}:
        raise PermissionError("Not allowed")
    return set_archived(db, user_email=viewer, request_id=int(request.id), archived=archived)


def _listing(db: Session, column, *, user_email: str, status: str | None, include_archived: bool) -> list[TaskRequest]:
    email = normalize_email(user_email)
    q = db.query(TaskRequest).filter(column == email)
    if status:
        try:
            q = q.filter(TaskRequest.status == RequestStatus(str(status).strip().lower()).value)
        except ValueError as e:
            raise ValueError(f"Invalid request status: {status!r}") from e
    rows = q.order_by(TaskRequest.created_at.desc(), TaskRequest.id.desc()).all()
    if include_archived:
        return rows
    hidden = archived_request_ids(db, user_email=email)
    return [r for r in rows if int(r.id) not in hidden]


def list_inbox(
    db: Session, *, user_email: str, status: str | None = None, include_archived: bool = False
) -> list[TaskRequest]:
    return _listing(db, TaskRequest.to_user, user_email=user_email, status=status, include_archived=include_archived)


def list_outbox(
    db: Session, *, user_email: str, status: str | None = None, include_archived: bool = False
) -> list[TaskRequest]:
    return _listing(db, TaskRequest.from_user, user_email=user_email, status=status, include_archived=include_archived)
