from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from .filters import FilterCriteria
from .models import ArchiveFlag, SmartFilter, Task, TaskStatus, TaskType, enum_value
from .priority import parse_priority
from .recurrence import build_next_instance, compute_next_due_date, parse_recurrence_spec
from .task_items import normalize_comments, normalize_labels, normalize_reminders, normalize_subtasks
from .utils.time_utils import now_utc, parse_date, parse_time


logger = logging.getLogger("taskflow.crud")


# ---- Change events (stable API) -----------------------------------------------------

EVENT_CREATED = "created"
EVENT_UPDATED = "updated"
EVENT_COMPLETED = "completed"
EVENT_REOPENED = "reopened"
EVENT_DELETED = "deleted"

_UNSET = object()


def normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    e = str(email).strip().lower()
    return e or None


# ---------------------- Subscriptions ----------------------


ChangeCallback = Callable[[str, int], None]

_SUBSCRIBERS: dict[str, list[ChangeCallback]] = {}
_SUBSCRIBERS_LOCK = threading.Lock()


def subscribe(email: str, callback: ChangeCallback) -> Callable[[], None]:
    """Register `callback(event_type, task_id)` for changes to tasks touching `email`.

    Returns a function that removes the subscription.
    """
    key = normalize_email(email)
    if not key:
        raise ValueError("Email is required")
    with _SUBSCRIBERS_LOCK:
        _SUBSCRIBERS.setdefault(key, []).append(callback)

    def _unsubscribe() -> None:
        with _SUBSCRIBERS_LOCK:
            callbacks = _SUBSCRIBERS.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                _SUBSCRIBERS.pop(key, None)

    return _unsubscribe


def publish_change(task: Task, event_type: str) -> None:
    _notify(event_type, int(task.id), {normalize_email(task.assigned_to), normalize_email(task.created_by)})


def _notify(event_type: str, task_id: int, emails: set) -> None:
    for email in emails:
        if not email:
            continue
        with _SUBSCRIBERS_LOCK:
            callbacks = list(_SUBSCRIBERS.get(email, []))
        for cb in callbacks:
            try:
                cb(event_type, task_id)
            except Exception:
                logger.exception("Task change subscriber failed for %s", email)


# ---------------------- Validation ----------------------


def _clean_due_date(value) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    d = parse_date(value)
    if d is None:
        raise ValueError(f"Invalid due date: {value!r}")
    return d.isoformat()


def _clean_due_time(value) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    t = parse_time(value)
    if t is None:
        raise ValueError(f"Invalid due time: {value!r}")
    return t.strftime("%H:%M")


def _clean_status(value) -> str:
    try:
        return TaskStatus(enum_value(value).strip().lower()).value
    except ValueError as e:
        raise ValueError(f"Invalid status: {value!r}") from e


def _clean_estimated_time(value) -> int | None:
    if value is None:
        return None
    m = int(value)
    if m < 0:
        raise ValueError("Estimated time must be >= 0")
    return m


def _clean_recurring(value) -> dict | None:
    spec = parse_recurrence_spec(value)
    return spec.to_dict() if spec is not None else None


def can_access(task: Task, user_email: str) -> bool:
    u = normalize_email(user_email)
    return bool(u) and u in {normalize_email(task.assigned_to), normalize_email(task.created_by)}


def _require_edit(task: Task, user_email: str) -> None:
    if not can_access(task, user_email):
        raise PermissionError("Not allowed")


# ---------------------- Tasks ----------------------


def create_task(
    db: Session,
    *,
    assigned_to: str,
    title: str,
    description: str | None = None,
    priority: str | None = None,
    status: str | None = None,
    category: str | None = None,
    due_date: Any = None,
    due_time: Any = None,
    estimated_time: int | None = None,
    created_by: str | None = None,
    labels: Iterable[str] | None = None,
    subtasks: Iterable[dict] | None = None,
    attachments: Iterable[str] | None = None,
    reminders: Iterable[dict] | None = None,
    project: str | None = None,
    section: str | None = None,
    order: float | None = None,
    recurring: Any = None,
    task_type: str = TaskType.user_created.value,
    when_utc: datetime | None = None,
) -> Task:
    owner = normalize_email(assigned_to)
    if not owner:
        raise ValueError("assigned_to is required")
    name = str(title or "").strip()
    if not name:
        raise ValueError("Title is required")

    st = _clean_status(status or TaskStatus.pending.value)
    when = (when_utc or now_utc()).replace(tzinfo=None)

    task = Task(
        title=name,
        description=description,
        priority=parse_priority(priority).value,
        status=st,
        category=(category or None),
        due_date=_clean_due_date(due_date),
        due_time=_clean_due_time(due_time),
        estimated_time=_clean_estimated_time(estimated_time),
        assigned_to=owner,
        created_by=normalize_email(created_by),
        labels=list(normalize_labels(labels)),
        subtasks=list(normalize_subtasks(subtasks)),
        comments=[],
        attachments=[str(a) for a in (attachments or [])],
        reminders=list(normalize_reminders(reminders)),
        project=project,
        section=section,
        order=order,
        recurring=_clean_recurring(recurring),
        task_type=TaskType(enum_value(task_type)).value,
        completed_date=(when if st == TaskStatus.completed.value else None),
    )
    db.add(task)
    db.commit()
    db.refresh(task)

    publish_change(task, EVENT_CREATED)
    return task


def get_task(db: Session, *, task_id: int) -> Optional[Task]:
    return db.query(Task).filter(Task.id == int(task_id)).first()


def list_tasks_for_assignee(
    db: Session,
    email: str,
    *,
    status: str | None = None,
    include_completed: bool = True,
) -> list[Task]:
    q = db.query(Task).filter(Task.assigned_to == normalize_email(email))
    if status:
        q = q.filter(Task.status == _clean_status(status))
    elif not include_completed:
        q = q.filter(Task.status != TaskStatus.completed.value)
    return q.order_by(Task.id.asc()).all()


def list_recurring_instances(db: Session, *, parent_task_id: int) -> list[Task]:
    return db.query(Task).filter(Task.recurring_parent == int(parent_task_id)).order_by(Task.id.asc()).all()


_PATCHABLE = {
    "title",
    "description",
    "priority",
    "category",
    "due_date",
    "due_time",
    "estimated_time",
    "assigned_to",
    "labels",
    "subtasks",
    "comments",
    "attachments",
    "reminders",
    "project",
    "section",
    "order",
    "recurring",
}


def _apply_field(task: Task, name: str, value: Any) -> None:
    if name == "title":
        v = str(value or "").strip()
        if not v:
            raise ValueError("Title is required")
        task.title = v
    elif name == "priority":
        task.priority = parse_priority(value).value
    elif name == "due_date":
        task.due_date = _clean_due_date(value)
    elif name == "due_time":
        task.due_time = _clean_due_time(value)
    elif name == "estimated_time":
        task.estimated_time = _clean_estimated_time(value)
    elif name == "assigned_to":
        owner = normalize_email(value)
        if not owner:
            raise ValueError("assigned_to is required")
        task.assigned_to = owner
    elif name == "labels":
        task.labels = list(normalize_labels(value))
    elif name == "subtasks":
        task.subtasks = list(normalize_subtasks(value))
    elif name == "comments":
        task.comments = list(normalize_comments(value))
    elif name == "reminders":
        task.reminders = list(normalize_reminders(value))
    elif name == "attachments":
        task.attachments = [str(a) for a in (value or [])]
    elif name == "recurring":
        task.recurring = _clean_recurring(value)
    else:
        setattr(task, name, value)


def update_task(
    db: Session,
    *,
    task: Task,
    current_user: str,
    patch: dict[str, Any],
    when_utc: datetime | None = None,
) -> tuple[Task, Optional[Task]]:
    """Apply a partial patch. A status change goes through complete/reopen.

    Returns (task, spawned_recurrence_instance_or_None).
    """
    _require_edit(task, current_user)

    fields = dict(patch or {})
    new_status = fields.pop("status", _UNSET)
    # Managed by the status transition, never patched directly.
    fields.pop("completed_date", None)

    unknown = set(fields) - _PATCHABLE
    if unknown:
        raise ValueError(f"Unknown task fields: {', '.join(sorted(unknown))}")
    target = None
    if new_status is not _UNSET and new_status is not None:
        target = _clean_status(new_status)

    # Field changes and the status transition are committed together.
    try:
        for name, value in fields.items():
            _apply_field(task, name, value)
        if fields:
            db.add(task)
            db.flush()
    except Exception:
        db.rollback()
        raise

    event = EVENT_UPDATED if fields else None
    spawned: Optional[Task] = None
    current = enum_value(task.status)
    if target is not None and target != current:
        if target == TaskStatus.completed.value:
            when = (when_utc or now_utc()).replace(tzinfo=None)
            changed, spawned = _complete_in_session(db, task, when)
            if changed:
                event = EVENT_COMPLETED
        elif current == TaskStatus.completed.value:
            if _reopen_in_session(db, task, target):
                event = EVENT_REOPENED
        else:
            task.status = target
            db.add(task)
            event = EVENT_UPDATED

    if event is None:
        db.rollback()
        db.refresh(task)
        return task, None

    db.commit()
    db.refresh(task)
    if spawned is not None:
        db.refresh(spawned)
        logger.info("Task %s completed; spawned recurrence %s due %s", task.id, spawned.id, spawned.due_date)

    if fields and event != EVENT_UPDATED:
        publish_change(task, EVENT_UPDATED)
    publish_change(task, event)
    if spawned is not None:
        publish_change(spawned, EVENT_CREATED)
    return task, spawned


def _complete_in_session(
    db: Session, task: Task, when: datetime, *, spawn_recurrence: bool = True
) -> tuple[bool, Optional[Task]]:
    """Conditional flip to completed plus the recurrence spawn, left uncommitted."""
    result = db.execute(
        update(Task)
        .where(Task.id == int(task.id))
        .where(Task.status != TaskStatus.completed.value)
        .values(status=TaskStatus.completed.value, completed_date=when, updated_at=when)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return False, None

    spawned: Optional[Task] = None
    if spawn_recurrence:
        next_due = compute_next_due_date(task)
        if next_due is not None:
            spawned = build_next_instance(task, next_due)
            db.add(spawned)
    return True, spawned


def _reopen_in_session(db: Session, task: Task, target: str) -> bool:
    result = db.execute(
        update(Task)
        .where(Task.id == int(task.id))
        .where(Task.status == TaskStatus.completed.value)
        .values(status=target, completed_date=None, updated_at=now_utc())
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


def complete_task(
    db: Session,
    *,
    task: Task,
    current_user: str,
    when_utc: datetime | None = None,
    spawn_recurrence: bool = True,
) -> tuple[Task, Optional[Task]]:
    """Mark a task completed and, in the same transaction, spawn its next occurrence.

    The status flip is a conditional write; if the task is already completed
    (double-click, retried request, concurrent worker) nothing is spawned.
    """
    _require_edit(task, current_user)
    when = (when_utc or now_utc()).replace(tzinfo=None)

    changed, spawned = _complete_in_session(db, task, when, spawn_recurrence=spawn_recurrence)
    if not changed:
        db.rollback()
        db.refresh(task)
        logger.info("Task %s already completed; no recurrence spawned", task.id)
        return task, None

    db.commit()
    db.refresh(task)
    if spawned is not None:
        db.refresh(spawned)
        logger.info("Task %s completed; spawned recurrence %s due %s", task.id, spawned.id, spawned.due_date)

    publish_change(task, EVENT_COMPLETED)
    if spawned is not None:
        publish_change(spawned, EVENT_CREATED)
    return task, spawned


def reopen_task(
    db: Session,
    *,
    task: Task,
    current_user: str,
    status: str = TaskStatus.pending.value,
) -> Task:
    """Move a completed task back to an open status and clear its completion time.

    Instances already spawned by its completion are left as they are.
    """
    _require_edit(task, current_user)
    target = _clean_status(status)
    if target == TaskStatus.completed.value:
        raise ValueError("Reopen target must be an open status")

    if not _reopen_in_session(db, task, target):
        db.rollback()
        db.refresh(task)
        return task

    db.commit()
    db.refresh(task)
    publish_change(task, EVENT_REOPENED)
    return task


def set_task_collection(
    db: Session,
    *,
    task: Task,
    current_user: str,
    field: str,
    value: Iterable,
) -> Task:
    """Write back a composite field produced by one of the task_items operations."""
    if field not in {"subtasks", "comments", "reminders", "labels", "attachments"}:
        raise ValueError(f"Not a collection field: {field}")
    _require_edit(task, current_user)
    _apply_field(task, field, list(value))
    db.add(task)
    db.commit()
    db.refresh(task)
    publish_change(task, EVENT_UPDATED)
    return task


def delete_task(db: Session, *, task: Task, current_user: str) -> None:
    _require_edit(task, current_user)
    task_id = int(task.id)
    emails = {normalize_email(task.assigned_to), normalize_email(task.created_by)}
    db.query(ArchiveFlag).filter(ArchiveFlag.task_id == task_id).delete(synchronize_session=False)
    db.delete(task)
    db.commit()
    _notify(EVENT_DELETED, task_id, emails)


def reorder_tasks(db: Session, *, assignee: str, ordered_ids: list[int]) -> list[Task]:
    """Assign `order` 0..n-1 to the given tasks within one assignee's view."""
    owner = normalize_email(assignee)
    ids = [int(i) for i in ordered_ids]
    tasks = db.query(Task).filter(Task.assigned_to == owner).filter(Task.id.in_(ids)).all()
    by_id = {int(t.id): t for t in tasks}
    missing = [i for i in ids if i not in by_id]
    if missing:
        raise ValueError(f"Tasks not found for {owner}: {missing}")
    for pos, tid in enumerate(ids):
        by_id[tid].order = float(pos)
        db.add(by_id[tid])
    db.commit()
    return [by_id[i] for i in ids]


# ---------------------- Per-viewer archive flags ----------------------


def _archive_query(db: Session, *, user_email: str, request_id: int | None, task_id: int | None):
    q = db.query(ArchiveFlag).filter(ArchiveFlag.user_email == normalize_email(user_email))
    if request_id is not None:
        q = q.filter(ArchiveFlag.request_id == int(request_id))
    else:
        q = q.filter(ArchiveFlag.request_id.is_(None))
    if task_id is not None:
        q = q.filter(ArchiveFlag.task_id == int(task_id))
    else:
        q = q.filter(ArchiveFlag.task_id.is_(None))
    return q


def set_archived(
    db: Session,
    *,
    user_email: str,
    request_id: int | None = None,
    task_id: int | None = None,
    archived: bool = True,
) -> bool:
    """Hide (or unhide) a request or task for one viewer only. Returns True if anything changed."""
    if request_id is None and task_id is None:
        raise ValueError("request_id or task_id is required")
    email = normalize_email(user_email)
    if not email:
        raise ValueError("Email is required")

    existing = _archive_query(db, user_email=email, request_id=request_id, task_id=task_id).first()
    if archived:
        if existing is not None:
            return False
        db.add(
            ArchiveFlag(
                user_email=email,
                request_id=(int(request_id) if request_id is not None else None),
                task_id=(int(task_id) if task_id is not None else None),
            )
        )
        db.commit()
        return True

    if existing is None:
        return False
    db.delete(existing)
    db.commit()
    return True


def archived_task_ids(db: Session, *, user_email: str) -> set[int]:
    rows = (
        db.query(ArchiveFlag.task_id)
        .filter(ArchiveFlag.user_email == normalize_email(user_email))
        .filter(ArchiveFlag.task_id.is_not(None))
        .all()
    )
    return {int(r[0]) for r in rows}


def archived_request_ids(db: Session, *, user_email: str) -> set[int]:
    rows = (
        db.query(ArchiveFlag.request_id)
        .filter(ArchiveFlag.user_email == normalize_email(user_email))
        .filter(ArchiveFlag.request_id.is_not(None))
        .all()
    )
    return {int(r[0]) for r in rows}


# ---------------------- Saved smart filters ----------------------


def create_smart_filter(db: Session, *, user_email: str, name: str, criteria: dict | None) -> SmartFilter:
    n = str(name or "").strip()
    if not n:
        raise ValueError("Filter name is required")
    crit = FilterCriteria.from_raw(criteria)
    sf = SmartFilter(user_email=normalize_email(user_email), name=n, criteria=crit.to_dict())
    db.add(sf)
    db.commit()
    db.refresh(sf)
    return sf


def list_smart_filters(db: Session, *, user_email: str) -> list[SmartFilter]:
    return (
        db.query(SmartFilter)
        .filter(SmartFilter.user_email == normalize_email(user_email))
        .order_by(SmartFilter.name.asc(), SmartFilter.id.asc())
        .all()
    )


def get_smart_filter(db: Session, *, filter_id: int) -> Optional[SmartFilter]:
    return db.query(SmartFilter).filter(SmartFilter.id == int(filter_id)).first()


def update_smart_filter(
    db: Session,
    *,
    smart_filter: SmartFilter,
    current_user: str,
    name: str | None = None,
    criteria: dict | None = None,
) -> SmartFilter:
    if normalize_email(smart_filter.user_email) != normalize_email(current_user):
        raise PermissionError("Not allowed")
    if name is not None:
        n = str(name).strip()
        if not n:
            raise ValueError("Filter name is required")
        smart_filter.name = n
    if criteria is not None:
        smart_filter.criteria = FilterCriteria.from_raw(criteria).to_dict()
    db.add(smart_filter)
    db.commit()
    db.refresh(smart_filter)
    return smart_filter


def delete_smart_filter(db: Session, *, smart_filter: SmartFilter, current_user: str) -> None:
    if normalize_email(smart_filter.user_email) != normalize_email(current_user):
        raise PermissionError("Not allowed")
    db.delete(smart_filter)
    db.commit()
