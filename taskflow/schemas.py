from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .classifier import classify


class ReminderCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(default="relative", description="relative (minutes before due) or absolute (fixed datetime)")
    minutes: Optional[int] = Field(default=None, ge=0)
    at: Optional[str] = Field(default=None, alias="datetime", description="ISO datetime for absolute reminders")
    label: Optional[str] = Field(default=None, max_length=255)


class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    priority: Optional[str] = Field(default=None, description="low/medium/high/urgent or p4..p1")
    category: Optional[str] = Field(default=None, max_length=128)

    due_date: Optional[str] = Field(default=None, description="YYYY-MM-DD in the app timezone")
    due_time: Optional[str] = Field(default=None, description="HH:MM; only meaningful with due_date")
    estimated_time: Optional[int] = Field(default=None, ge=0, description="Minutes")

    labels: List[str] = Field(default_factory=list)
    attachments: List[str] = Field(default_factory=list)

    project: Optional[str] = Field(default=None, max_length=128)
    section: Optional[str] = Field(default=None, max_length=128)
    order: Optional[float] = None

    recurring: Optional[Any] = Field(
        default=None,
        description=(
            "Either an object {pattern, interval, endDate} or a phrase like "
            "'daily', 'every 2 weeks', 'every monday', 'yearly'."
        ),
    )


class TaskCreate(TaskBase):
    status: Optional[str] = None
    assigned_to: Optional[str] = Field(default=None, description="Defaults to the caller")
    subtasks: List[str] = Field(default_factory=list, description="Subtask texts")
    reminders: List[ReminderCreate] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    category: Optional[str] = None
    due_date: Optional[str] = None
    due_time: Optional[str] = None
    estimated_time: Optional[int] = Field(default=None, ge=0)
    assigned_to: Optional[str] = None
    labels: Optional[List[str]] = None
    attachments: Optional[List[str]] = None
    project: Optional[str] = None
    section: Optional[str] = None
    order: Optional[float] = None
    recurring: Optional[Any] = None


class TaskOut(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    priority: str
    status: str
    category: Optional[str] = None
    due_date: Optional[str] = None
    due_time: Optional[str] = None
    estimated_time: Optional[int] = None
    assigned_to: str
    created_by: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    subtasks: List[Dict[str, Any]] = Field(default_factory=list)
    comments: List[Dict[str, Any]] = Field(default_factory=list)
    attachments: List[str] = Field(default_factory=list)
    reminders: List[Dict[str, Any]] = Field(default_factory=list)
    project: Optional[str] = None
    section: Optional[str] = None
    order: Optional[float] = None
    recurring: Optional[Dict[str, Any]] = None
    recurring_parent: Optional[int] = None
    completed_date: Optional[datetime] = None
    task_type: str
    created_at: datetime
    updated_at: datetime

    # Derived against "now" on every response; never stored.
    due_kind: str = "no_due_date"
    due_label: str = ""
    is_overdue: bool = False
    days_overdue: int = 0

    class Config:
        from_attributes = True


def task_out(task, now: datetime) -> TaskOut:
    c = classify(task, now)
    out = TaskOut.model_validate(task)
    out.due_kind = c.kind.value
    out.due_label = c.label
    out.is_overdue = c.is_overdue
    out.days_overdue = c.days_overdue
    return out


class TaskCompleteResponse(BaseModel):
    completed_task: TaskOut
    spawned_task: Optional[TaskOut] = None


class ViewCounts(BaseModel):
    today: int
    overdue: int
    upcoming: int


class SubtaskCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=1000)


class SubtaskUpdate(BaseModel):
    completed: bool


class CommentCreate(BaseModel):
    text: str = Field(default="", max_length=10000)
    attachments: List[str] = Field(default_factory=list)


class LabelIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)


class AttachmentIn(BaseModel):
    uri: str = Field(..., min_length=1, max_length=2048)


class ReorderRequest(BaseModel):
    ordered_ids: List[int] = Field(..., min_length=1)


class TaskRequestCreate(BaseModel):
    to_user: str = Field(..., min_length=3, max_length=255)
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None


class TaskRequestOut(BaseModel):
    id: int
    from_user: str
    to_user: str
    title: str
    description: Optional[str] = None
    priority: str
    due_date: Optional[str] = None
    status: str
    task_id: Optional[int] = None
    decline_reason: Optional[str] = None
    created_at: datetime
    responded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DeclineRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class AcceptResponse(BaseModel):
    request: TaskRequestOut
    task: TaskOut


class SmartFilterCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    criteria: Dict[str, Any] = Field(default_factory=dict)


class FilterApply(BaseModel):
    criteria: Dict[str, Any] = Field(default_factory=dict)


class SmartFilterUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    criteria: Optional[Dict[str, Any]] = None


class SmartFilterOut(BaseModel):
    id: int
    user_email: str
    name: str
    criteria: Dict[str, Any]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PresetFilterOut(BaseModel):
    id: str
    name: str
    criteria: Dict[str, Any]


class NotificationOut(BaseModel):
    id: int
    type: str
    title: str
    message: Optional[str] = None
    link: Optional[str] = None
    task_id: Optional[int] = None
    read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class MarkReadRequest(BaseModel):
    ids: Optional[List[int]] = None
