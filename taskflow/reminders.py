from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import update
from sqlalchemy.orm import Session

from .models import ReminderType, Task, TaskStatus
from .notifications import TYPE_TASK_REMINDER, NotificationEvent, NotificationSink, safe_emit, tasks_link
from .task_items import mark_reminder_sent
from .utils.humanize import due_in_phrase
from .utils.time_utils import Clock, due_instant, ensure_aware, now_utc, parse_datetime


logger = logging.getLogger("taskflow.reminders")

JOB_ID = "task_reminders"


def reminder_fire_time(task, reminder: dict, tz=None) -> Optional[datetime]:
    """Instant a reminder is meant to go off, or None when it cannot be resolved."""
    if not isinstance(reminder, dict):
        return None
    rtype = str(reminder.get("type") or "").strip().lower()
    if rtype == ReminderType.relative.value:
        due = due_instant(task, tz)
        if due is None:
            return None
        try:
            minutes = int(reminder.get("minutes"))
        except (TypeError, ValueError):
            return None
        return due - timedelta(minutes=minutes)
    if rtype == ReminderType.absolute.value:
        return parse_datetime(reminder.get("datetime"), tz)
    return None


def should_fire(task, reminder: dict, now: datetime, *, window_minutes: int = 2) -> bool:
    """True when `now` falls in [fire_time, fire_time + window) and the reminder is unsent."""
    if not isinstance(reminder, dict) or reminder.get("sent"):
        return False
    now = ensure_aware(now)
    fire_at = reminder_fire_time(task, reminder, now.tzinfo)
    if fire_at is None:
        return False
    return fire_at <= now < fire_at + timedelta(minutes=int(window_minutes))


def minutes_until_due(task, reminder: dict, tz=None) -> int:
    rtype = str(reminder.get("type") or "").strip().lower()
    if rtype == ReminderType.relative.value:
        try:
            return max(0, int(reminder.get("minutes") or 0))
        except (TypeError, ValueError):
            return 0
    due = due_instant(task, tz)
    at = parse_datetime(reminder.get("datetime"), tz)
    if due is None or at is None:
        return 0
    return max(0, int((due - at).total_seconds() // 60))


def reminder_message(task, minutes: int) -> str:
    return f'"{task.title}" {due_in_phrase(minutes)}'


class ReminderScheduler:
    """Periodic reminder check over open tasks.

    Each tick re-reads every open task with a due date, fires the reminders
    whose window contains "now", and records them as sent before any
    notification is emitted. A failure on one task is logged and the batch
    moves on.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        sink: NotificationSink | None,
        *,
        clock: Clock | None = None,
        interval_seconds: int = 60,
        window_minutes: int = 2,
        user_email: str | None = None,
    ):
        self.session_factory = session_factory
        self.sink = sink
        self.clock = clock or Clock()
        self.interval_seconds = max(1, int(interval_seconds))
        self.window_minutes = max(1, int(window_minutes))
        self.user_email = (user_email or "").strip().lower() or None

        self._scheduler: BackgroundScheduler | None = None
        self._lock = threading.Lock()

    # ---- one tick ----

    def _candidate_ids(self, db: Session) -> list[int]:
        q = (
            db.query(Task.id)
            .filter(Task.status != TaskStatus.completed.value)
            .filter(Task.due_date.is_not(None))
        )
        if self.user_email:
            q = q.filter(Task.assigned_to == self.user_email)
        return [int(r[0]) for r in q.order_by(Task.id.asc()).all()]

    def _process_task(self, db: Session, task_id: int, now: datetime) -> list[NotificationEvent]:
        task = db.query(Task).filter(Task.id == task_id).first()
        if task is None or task.is_completed:
            return []

        reminders = list(task.reminders or [])
        due_now = [r for r in reminders if should_fire(task, r, now, window_minutes=self.window_minutes)]
        if not due_now:
            return []

        when = now.astimezone(timezone.utc).replace(tzinfo=None)
        updated = tuple(reminders)
        events = []
        for r in due_now:
            updated = mark_reminder_sent(updated, r["id"], when_utc=when)
            minutes = minutes_until_due(task, r, now.tzinfo)
            events.append(
                NotificationEvent(
                    user_email=task.assigned_to,
                    title=(r.get("label") or "Task Reminder"),
                    message=reminder_message(task, minutes),
                    link=tasks_link(),
                    task_id=int(task.id),
                    type=TYPE_TASK_REMINDER,
                )
            )

        # Guarded on the row version so a concurrent edit is not clobbered;
        # a lost race just means the next tick looks again.
        result = db.execute(
            update(Task)
            .where(Task.id == int(task.id))
            .where(Task.status != TaskStatus.completed.value)
            .where(Task.updated_at == task.updated_at)
            .values(reminders=list(updated), updated_at=now_utc())
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            db.rollback()
            logger.info("Task %s changed during reminder check; retrying next tick", task_id)
            return []
        db.commit()
        return events

    def check_due_reminders(self) -> list[NotificationEvent]:
        """Run one check. Returns the events that were fired."""
        with self._lock:
            now = self.clock.now()
            fired: list[NotificationEvent] = []
            db = self.session_factory()
            try:
                for task_id in self._candidate_ids(db):
                    try:
                        events = self._process_task(db, task_id, now)
                    except Exception:
                        db.rollback()
                        logger.exception("Failed to evaluate reminders for task %s", task_id)
                        continue
                    for ev in events:
                        safe_emit(self.sink, ev)
                    fired.extend(events)
            finally:
                db.close()

            if fired:
                logger.info("Fired %s reminder(s)", len(fired))
            return fired

    def _tick(self) -> None:
        try:
            self.check_due_reminders()
        except Exception:
            logger.exception("Error while checking task reminders")

    # ---- lifecycle ----

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        if self._scheduler is not None:
            return
        sched = BackgroundScheduler(timezone="UTC")
        sched.add_job(
            self._tick,
            "interval",
            seconds=self.interval_seconds,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            # Immediate check on start.
            next_run_time=datetime.now(timezone.utc),
        )
        sched.start()
        self._scheduler = sched
        logger.info("Reminder scheduler started (every %ss, window %sm)", self.interval_seconds, self.window_minutes)

    def stop(self, wait: bool = True) -> None:
        """Stop future ticks; with `wait` an in-flight tick is allowed to finish."""
        sched = self._scheduler
        self._scheduler = None
        if sched is None:
            return
        sched.shutdown(wait=wait)
        logger.info("Reminder scheduler stopped")
