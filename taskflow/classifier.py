from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from .models import TaskStatus, enum_value
from .priority import priority_rank
from .utils.humanize import full_date_label, month_day_label, overdue_label, weekday_label
from .utils.time_utils import due_instant, ensure_aware, to_local


class DueKind(str, enum.Enum):
    no_due_date = "no_due_date"
    overdue = "overdue"
    today = "today"
    tomorrow = "tomorrow"
    in_days = "in_days"  # 2..6 days out
    this_year = "this_year"
    future_year = "future_year"
    past = "past"  # completed task whose due date has gone by


VIEW_TODAY = "today"
VIEW_OVERDUE = "overdue"
VIEW_UPCOMING = "upcoming"
VIEWS = (VIEW_TODAY, VIEW_OVERDUE, VIEW_UPCOMING)


@dataclass(frozen=True)
class DueClassification:
    kind: DueKind
    due_on: Optional[date] = None
    # Signed calendar days from today to the due date.
    days: Optional[int] = None
    today: Optional[date] = None

    @property
    def is_overdue(self) -> bool:
        return self.kind == DueKind.overdue

    @property
    def days_overdue(self) -> int:
        if self.kind != DueKind.overdue or self.days is None:
            return 0
        return max(0, -self.days)

    @property
    def label(self) -> str:
        """Display text; recomputed on every access, never stored."""
        k = self.kind
        if k == DueKind.no_due_date or self.due_on is None:
            return ""
        if k == DueKind.overdue:
            return overdue_label(self.days_overdue)
        if k == DueKind.today:
            return "Today"
        if k == DueKind.tomorrow:
            return "Tomorrow"
        if k == DueKind.in_days:
            return weekday_label(self.due_on)
        if k == DueKind.this_year:
            return month_day_label(self.due_on)
        if k == DueKind.past:
            if self.today is not None and self.today.year == self.due_on.year:
                return month_day_label(self.due_on)
            return full_date_label(self.due_on)
        return full_date_label(self.due_on)


NO_DUE_DATE = DueClassification(DueKind.no_due_date)


def _is_completed(task) -> bool:
    return enum_value(getattr(task, "status", None)) == TaskStatus.completed.value


def classify(task, now: datetime) -> DueClassification:
    """Bucket a task's due date/time against `now`.

    `now` carries the canonical timezone; naive values are read in the app timezone.
    Malformed or missing due dates yield NO_DUE_DATE.
    """
    now = ensure_aware(now)
    instant = due_instant(task, now.tzinfo)
    if instant is None:
        return NO_DUE_DATE

    due_on = instant.date()
    today = now.date()
    days = (due_on - today).days

    # Due exactly at `now` is still "today".
    if instant < now and not _is_completed(task):
        return DueClassification(DueKind.overdue, due_on, days, today)
    if days < 0:
        return DueClassification(DueKind.past, due_on, days, today)
    if days == 0:
        return DueClassification(DueKind.today, due_on, days, today)
    if days == 1:
        return DueClassification(DueKind.tomorrow, due_on, days, today)
    if days < 7:
        return DueClassification(DueKind.in_days, due_on, days, today)
    if due_on.year == today.year:
        return DueClassification(DueKind.this_year, due_on, days, today)
    return DueClassification(DueKind.future_year, due_on, days, today)


def bucket_for(task, now: datetime) -> Optional[str]:
    """Dashboard view a task belongs to, or None when it belongs to none."""
    c = classify(task, now)
    if c.kind == DueKind.overdue:
        return VIEW_OVERDUE
    if c.kind == DueKind.today:
        return VIEW_TODAY
    if c.kind in (DueKind.tomorrow, DueKind.in_days, DueKind.this_year, DueKind.future_year):
        return VIEW_UPCOMING
    return None


def is_recently_completed(task, now: datetime, *, visible_hours: int = 24) -> bool:
    """Time-based visibility: open tasks always pass, completed ones for `visible_hours`.

    Archive-based visibility is a separate predicate; callers AND the two.
    """
    if not _is_completed(task):
        return True
    completed = getattr(task, "completed_date", None)
    if completed is None:
        return False
    now = ensure_aware(now)
    completed_local = to_local(completed, now.tzinfo)
    return now - completed_local < timedelta(hours=int(visible_hours))


def visible_tasks(
    tasks: Iterable,
    now: datetime,
    *,
    archived_task_ids: Iterable[int] = (),
    visible_hours: int = 24,
    include_archived: bool = False,
) -> list:
    archived = {int(x) for x in archived_task_ids}
    out = []
    for t in tasks:
        if not is_recently_completed(t, now, visible_hours=visible_hours):
            continue
        if not include_archived and getattr(t, "id", None) is not None and int(t.id) in archived:
            continue
        out.append(t)
    return out


def tasks_in_view(tasks: Iterable, view: str, now: datetime) -> list:
    if view not in VIEWS:
        raise ValueError(f"Invalid view: {view!r}")
    return [t for t in tasks if bucket_for(t, now) == view]


def count_by_view(tasks: Iterable, now: datetime) -> dict[str, int]:
    counts = {v: 0 for v in VIEWS}
    for t in tasks:
        b = bucket_for(t, now)
        if b is not None:
            counts[b] += 1
    return counts


def sort_tasks(tasks: Iterable) -> list:
    """Manual `order` first; tasks without one fall back to priority, highest first."""

    def key(t):
        order = getattr(t, "order", None)
        return (
            order is None,
            float(order) if order is not None else 0.0,
            -priority_rank(getattr(t, "priority", None)),
            getattr(t, "id", 0) or 0,
        )

    return sorted(tasks, key=key)
