from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth import get_clock, get_current_user_api
from ..classifier import count_by_view, sort_tasks, tasks_in_view, visible_tasks
from ..config import get_settings
from ..crud import (
    archived_task_ids,
    can_access,
    complete_task,
    create_task,
    delete_task,
    get_smart_filter,
    get_task,
    list_recurring_instances,
    list_tasks_for_assignee,
    normalize_email,
    reopen_task,
    reorder_tasks,
    set_archived,
    set_task_collection,
    update_task,
)
from ..db import get_db
from ..filters import apply_filter, get_preset
from ..models import Task
from ..schemas import (
    AttachmentIn,
    CommentCreate,
    LabelIn,
    ReminderCreate,
    ReorderRequest,
    SubtaskCreate,
    SubtaskUpdate,
    TaskCompleteResponse,
    TaskCreate,
    TaskOut,
    TaskUpdate,
    ViewCounts,
    task_out,
)
from ..task_items import (
    add_attachment,
    add_comment,
    add_label,
    add_reminder,
    add_subtask,
    make_reminder,
    remove_attachment,
    remove_comment,
    remove_label,
    remove_reminder,
    remove_subtask,
    set_subtask_completed,
)
from ..utils.time_utils import Clock


router = APIRouter()


def _load_task(db: Session, task_id: int, current_user: str) -> Task:
    task = get_task(db, task_id=task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    if not can_access(task, current_user):
        raise HTTPException(status_code=403, detail="Not allowed")
    return task


def visible_for_user(db: Session, current_user: str, now, *, status: str | None = None, include_archived: bool = False):
    s = get_settings()
    tasks = list_tasks_for_assignee(db, current_user, status=status)
    return visible_tasks(
        tasks,
        now,
        archived_task_ids=archived_task_ids(db, user_email=current_user),
        visible_hours=int(s.tasks.completed_visible_hours),
        include_archived=include_archived,
    )


def _write_collection(db: Session, task: Task, current_user: str, field: str, build: Callable[[], tuple]) -> Task:
    try:
        return set_task_collection(db, task=task, current_user=current_user, field=field, value=build())
    except KeyError:
        raise HTTPException(status_code=404, detail="Item not found")
    except PermissionError:
        raise HTTPException(status_code=403, detail="Not allowed")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/", response_model=list[TaskOut])
def api_list_tasks(
    view: str | None = Query(default=None, description="today/overdue/upcoming; omit for every visible task"),
    filter_id: int | None = Query(default=None, description="Saved smart filter id"),
    preset: str | None = Query(default=None, description="Preset quick filter id, e.g. preset-p1"),
    status: str | None = Query(default=None, description="pending/in_progress/completed"),
    include_archived: bool = Query(default=False),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    now = clock.now()
    try:
        tasks = visible_for_user(db, current_user, now, status=status, include_archived=include_archived)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    criteria = None
    if filter_id is not None:
        sf = get_smart_filter(db, filter_id=filter_id)
        if not sf:
            raise HTTPException(status_code=404, detail="Filter not found")
        if normalize_email(sf.user_email) != current_user:
            raise HTTPException(status_code=403, detail="Not allowed")
        criteria = sf.criteria
    elif preset:
        p = get_preset(preset)
        if not p:
            raise HTTPException(status_code=404, detail="Preset not found")
        criteria = p.criteria

    try:
        if criteria is not None:
            tasks = apply_filter(tasks, criteria, now.date())
        if view:
            tasks = tasks_in_view(tasks, view, now)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return [task_out(t, now) for t in sort_tasks(tasks)]


@router.get("/counts", response_model=ViewCounts)
def api_view_counts(
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    now = clock.now()
    return ViewCounts(**count_by_view(visible_for_user(db, current_user, now), now))


@router.post("/", response_model=TaskOut)
def api_create_task(
    payload: TaskCreate,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    try:
        subtasks: tuple = ()
        for text in payload.subtasks:
            subtasks = add_subtask(subtasks, text)
        reminders = [make_reminder(type=r.type, minutes=r.minutes, at=r.at, label=r.label) for r in payload.reminders]

        task = create_task(
            db,
            assigned_to=payload.assigned_to or current_user,
            created_by=current_user,
            title=payload.title,
            description=payload.description,
            priority=payload.priority,
            status=payload.status,
            category=payload.category,
            due_date=payload.due_date,
            due_time=payload.due_time,
            estimated_time=payload.estimated_time,
            labels=payload.labels,
            subtasks=subtasks,
            attachments=payload.attachments,
            reminders=reminders,
            project=payload.project,
            section=payload.section,
            order=payload.order,
            recurring=payload.recurring,
            when_utc=clock.now_utc_naive(),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return task_out(task, clock.now())


@router.post("/reorder", response_model=list[TaskOut])
def api_reorder_tasks(
    payload: ReorderRequest,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    try:
        tasks = reorder_tasks(db, assignee=current_user, ordered_ids=payload.ordered_ids)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    now = clock.now()
    return [task_out(t, now) for t in tasks]


@router.get("/{task_id}", response_model=TaskOut)
def api_get_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    return task_out(_load_task(db, task_id, current_user), clock.now())


@router.patch("/{task_id}", response_model=TaskCompleteResponse)
def api_update_task(
    task_id: int,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    try:
        updated, spawned = update_task(
            db,
            task=task,
            current_user=current_user,
            patch=payload.model_dump(exclude_unset=True),
            when_utc=clock.now_utc_naive(),
        )
    except PermissionError:
        raise HTTPException(status_code=403, detail="Not allowed")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    now = clock.now()
    return TaskCompleteResponse(
        completed_task=task_out(updated, now),
        spawned_task=(task_out(spawned, now) if spawned is not None else None),
    )


@router.delete("/{task_id}")
def api_delete_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    task = _load_task(db, task_id, current_user)
    try:
        delete_task(db, task=task, current_user=current_user)
    except PermissionError:
        raise HTTPException(status_code=403, detail="Not allowed")
    return {"deleted": task_id}


@router.post("/{task_id}/complete", response_model=TaskCompleteResponse)
def api_complete_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    try:
        completed, spawned = complete_task(db, task=task, current_user=current_user, when_utc=clock.now_utc_naive())
    except PermissionError:
        raise HTTPException(status_code=403, detail="Not allowed")

    now = clock.now()
    return TaskCompleteResponse(
        completed_task=task_out(completed, now),
        spawned_task=(task_out(spawned, now) if spawned is not None else None),
    )


@router.post("/{task_id}/reopen", response_model=TaskOut)
def api_reopen_task(
    task_id: int,
    status: str = Query(default="pending", description="Open status to return to"),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    try:
        reopened = reopen_task(db, task=task, current_user=current_user, status=status)
    except PermissionError:
        raise HTTPException(status_code=403, detail="Not allowed")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return task_out(reopened, clock.now())


@router.get("/{task_id}/instances", response_model=list[TaskOut])
def api_list_instances(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    now = clock.now()
    return [task_out(t, now) for t in list_recurring_instances(db, parent_task_id=int(task.id))]


# ---- Subtasks / comments / reminders / labels / attachments ----


@router.post("/{task_id}/subtasks", response_model=TaskOut)
def api_add_subtask(
    task_id: int,
    payload: SubtaskCreate,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    task = _write_collection(db, task, current_user, "subtasks", lambda: add_subtask(task.subtasks, payload.text))
    return task_out(task, clock.now())


@router.patch("/{task_id}/subtasks/{item_id}", response_model=TaskOut)
def api_set_subtask(
    task_id: int,
    item_id: str,
    payload: SubtaskUpdate,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    task = _write_collection(
        db, task, current_user, "subtasks", lambda: set_subtask_completed(task.subtasks, item_id, payload.completed)
    )
    return task_out(task, clock.now())


@router.delete("/{task_id}/subtasks/{item_id}", response_model=TaskOut)
def api_remove_subtask(
    task_id: int,
    item_id: str,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    task = _write_collection(db, task, current_user, "subtasks", lambda: remove_subtask(task.subtasks, item_id))
    return task_out(task, clock.now())


@router.post("/{task_id}/comments", response_model=TaskOut)
def api_add_comment(
    task_id: int,
    payload: CommentCreate,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    when = clock.now_utc_naive()
    task = _write_collection(
        db,
        task,
        current_user,
        "comments",
        lambda: add_comment(
            task.comments, author=current_user, text=payload.text, when_utc=when, attachments=payload.attachments
        ),
    )
    return task_out(task, clock.now())


@router.delete("/{task_id}/comments/{item_id}", response_model=TaskOut)
def api_remove_comment(
    task_id: int,
    item_id: str,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    task = _write_collection(db, task, current_user, "comments", lambda: remove_comment(task.comments, item_id))
    return task_out(task, clock.now())


@router.post("/{task_id}/reminders", response_model=TaskOut)
def api_add_reminder(
    task_id: int,
    payload: ReminderCreate,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    task = _write_collection(
        db,
        task,
        current_user,
        "reminders",
        lambda: add_reminder(
            task.reminders,
            make_reminder(type=payload.type, minutes=payload.minutes, at=payload.at, label=payload.label),
        ),
    )
    return task_out(task, clock.now())


@router.delete("/{task_id}/reminders/{item_id}", response_model=TaskOut)
def api_remove_reminder(
    task_id: int,
    item_id: str,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    task = _write_collection(db, task, current_user, "reminders", lambda: remove_reminder(task.reminders, item_id))
    return task_out(task, clock.now())


@router.post("/{task_id}/labels", response_model=TaskOut)
def api_add_label(
    task_id: int,
    payload: LabelIn,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    task = _write_collection(db, task, current_user, "labels", lambda: add_label(task.labels, payload.name))
    return task_out(task, clock.now())


@router.delete("/{task_id}/labels/{name}", response_model=TaskOut)
def api_remove_label(
    task_id: int,
    name: str,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    task = _write_collection(db, task, current_user, "labels", lambda: remove_label(task.labels, name))
    return task_out(task, clock.now())


@router.post("/{task_id}/attachments", response_model=TaskOut)
def api_add_attachment(
    task_id: int,
    payload: AttachmentIn,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    task = _write_collection(db, task, current_user, "attachments", lambda: add_attachment(task.attachments, payload.uri))
    return task_out(task, clock.now())


@router.delete("/{task_id}/attachments", response_model=TaskOut)
def api_remove_attachment(
    task_id: int,
    uri: str = Query(...),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    task = _load_task(db, task_id, current_user)
    task = _write_collection(db, task, current_user, "attachments", lambda: remove_attachment(task.attachments, uri))
    return task_out(task, clock.now())


# ---- Per-viewer archive ----


@router.post("/{task_id}/archive")
def api_archive_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    task = _load_task(db, task_id, current_user)
    changed = set_archived(db, user_email=current_user, task_id=int(task.id), archived=True)
    return {"archived": True, "changed": changed}


@router.post("/{task_id}/unarchive")
def api_unarchive_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    task = _load_task(db, task_id, current_user)
    changed = set_archived(db, user_email=current_user, task_id=int(task.id), archived=False)
    return {"archived": False, "changed": changed}
