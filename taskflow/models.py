from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base
from .utils.time_utils import now_utc


def enum_value(v) -> str:
    """Plain string value of an enum member or raw column value."""
    if isinstance(v, enum.Enum):
        return str(v.value)
    return "" if v is None else str(v)


class TaskStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"


class TaskType(str, enum.Enum):
    user_created = "user_created"
    delegated = "delegated"
    recurring_instance = "recurring_instance"


class RecurrencePattern(str, enum.Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class ReminderType(str, enum.Enum):
    relative = "relative"  # minutes before the due instant
    absolute = "absolute"  # a fixed datetime


class RequestStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(16), default="medium", nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=TaskStatus.pending.value, nullable=False, index=True)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Calendar date (YYYY-MM-DD) and time of day (HH:MM) in the app timezone.
    # Kept as text so legacy/imported values survive; readers parse and fail closed.
    due_date: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    due_time: Mapped[str | None] = mapped_column(String(16), nullable=True)
    estimated_time: Mapped[int | None] = mapped_column(Integer, nullable=True)

    assigned_to: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    labels: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    subtasks: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    comments: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    attachments: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    reminders: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    project: Mapped[str | None] = mapped_column(String(128), nullable=True)
    section: Mapped[str | None] = mapped_column(String(128), nullable=True)
    order: Mapped[float | None] = mapped_column("order", Float, nullable=True)

    # {"pattern": "daily|weekly|monthly|yearly", "interval": 1, "endDate": "YYYY-MM-DD" | None}
    recurring: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # Weak back-reference: no foreign key, deleting the template leaves instances alone.
    recurring_parent: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    # Naive UTC. Set iff status == completed.
    completed_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    task_type: Mapped[str] = mapped_column(String(32), default=TaskType.user_created.value, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=now_utc, onupdate=now_utc, nullable=False
    )

    @property
    def is_completed(self) -> bool:
        return enum_value(self.status) == TaskStatus.completed.value


class TaskRequest(Base):
    __tablename__ = "task_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_user: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    to_user: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(16), default="medium", nullable=False)
    due_date: Mapped[str | None] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(String(16), default=RequestStatus.pending.value, nullable=False, index=True)
    # Set iff status == accepted.
    task_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class ArchiveFlag(Base):
    """A viewer's private "hide for me" mark on a request or a task.

    Never touches the underlying record, so the other party is unaffected.
    """

    __tablename__ = "archive_flags"
    __table_args__ = (UniqueConstraint("user_email", "request_id", "task_id", name="uq_archive_flags"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    request_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    task_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)


class SmartFilter(Base):
    __tablename__ = "smart_filters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    criteria: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=now_utc, onupdate=now_utc, nullable=False
    )


class Notification(Base):
    """In-app notification row written by the database-backed sink."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    link: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    task_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False, index=True)
