from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Callable, Optional, Protocol

from sqlalchemy.orm import Session

from .config import get_settings
from .models import Notification
from .utils.time_utils import now_utc

logger = logging.getLogger("taskflow.notifications")

# ---- Notification types (stable API; persisted) -------------------------------------

TYPE_TASK_REMINDER = "task_reminder"
TYPE_TASK_REQUEST = "task_request"
TYPE_REQUEST_ACCEPTED = "task_request_accepted"
TYPE_REQUEST_DECLINED = "task_request_declined"

NOTIFICATION_TYPES = {
    TYPE_TASK_REMINDER,
    TYPE_TASK_REQUEST,
    TYPE_REQUEST_ACCEPTED,
    TYPE_REQUEST_DECLINED,
}


@dataclass(frozen=True)
class NotificationEvent:
    user_email: str
    title: str
    message: str
    link: str = "/tasks"
    task_id: Optional[int] = None
    type: str = TYPE_TASK_REMINDER

    def to_dict(self) -> dict:
        return asdict(self)


class NotificationSink(Protocol):
    def emit(self, event: NotificationEvent) -> None: ...


def _truncate(s: str, n: int) -> str:
    txt = str(s or "")
    if len(txt) <= int(n):
        return txt
    return txt[: max(0, int(n) - 1)] + "…"


def tasks_link() -> str:
    base = str(get_settings().app.base_url or "").strip().rstrip("/")
    return f"{base}/tasks" if base else "/tasks"


class LoggingNotificationSink:
    """Sink that only logs; handy for the CLI and dry runs."""

    def emit(self, event: NotificationEvent) -> None:
        logger.info("Notification for %s: %s - %s", event.user_email, event.title, event.message)


class DbNotificationSink:
    """Persist events as in-app Notification rows.

    Uses its own session so a delivery problem never touches the caller's transaction.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def emit(self, event: NotificationEvent) -> None:
        db = self.session_factory()
        try:
            create_notification(db, event)
            db.commit()
        finally:
            db.close()


def create_notification(db: Session, event: NotificationEvent) -> Notification:
    row = Notification(
        user_email=str(event.user_email),
        type=str(event.type),
        title=_truncate(event.title, 255),
        message=event.message,
        link=event.link,
        task_id=(int(event.task_id) if event.task_id is not None else None),
        read=False,
        created_at=now_utc(),
    )
    db.add(row)
    return row


def safe_emit(sink: NotificationSink | None, event: NotificationEvent) -> bool:
    """Fire-and-forget delivery: failures are logged, never raised."""
    if sink is None:
        return False
    try:
        sink.emit(event)
        return True
    except Exception:
        logger.exception("Failed to deliver %s notification to %s", event.type, event.user_email)
        return False


def list_notifications(
    db: Session,
    *,
    user_email: str,
    unread_only: bool = False,
    limit: int = 50,
) -> list[Notification]:
    q = db.query(Notification).filter(Notification.user_email == str(user_email))
    if unread_only:
        q = q.filter(Notification.read.is_(False))
    q = q.order_by(Notification.id.desc())
    lim = int(limit) if limit else 50
    return q.limit(max(1, min(lim, 200))).all()


def count_unread(db: Session, *, user_email: str) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_email == str(user_email))
        .filter(Notification.read.is_(False))
        .count()
    )


def mark_read(db: Session, *, user_email: str, ids: list[int] | None = None) -> int:
    q = (
        db.query(Notification)
        .filter(Notification.user_email == str(user_email))
        .filter(Notification.read.is_(False))
    )
    if ids:
        q = q.filter(Notification.id.in_([int(i) for i in ids]))
    count = q.update({Notification.read: True}, synchronize_session=False)
    db.commit()
    return int(count or 0)
