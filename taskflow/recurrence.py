from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Optional

from .models import RecurrencePattern, Task, TaskStatus, TaskType
from .utils.time_utils import parse_date


logger = logging.getLogger("taskflow.recurrence")


class RecurrenceError(ValueError):
    pass


@dataclass(frozen=True)
class RecurrenceSpec:
    pattern: RecurrencePattern
    interval: int = 1
    end_date: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern": self.pattern.value,
            "interval": int(self.interval),
            "endDate": self.end_date.isoformat() if self.end_date else None,
        }


_EVERY_N_RE = re.compile(
    r"every\s+(?:(?P<n>\d+)|(?P<other>other))?\s*(?P<unit>days?|weeks?|months?|years?)\b",
    re.IGNORECASE,
)

_WEEKDAY_RE = re.compile(
    r"every\s+(?:mon|tue|tues|wed|thu|thur|thurs|fri|sat|sun)(?:day|nesday|sday|urday)?\b",
    re.IGNORECASE,
)

_UNIT_PATTERNS = {
    "day": RecurrencePattern.daily,
    "week": RecurrencePattern.weekly,
    "month": RecurrencePattern.monthly,
    "year": RecurrencePattern.yearly,
}


def parse_recurring_pattern(text: str) -> Optional[RecurrenceSpec]:
    """Parse phrases like 'daily', 'every 2 weeks', 'every monday', 'annually'.

    Returns None when nothing recognizable is found.
    """
    if not text or not str(text).strip():
        return None
    t = str(text).strip().lower()

    if t in {"daily", "every day"}:
        return RecurrenceSpec(RecurrencePattern.daily, 1)
    if t in {"weekly", "every week"}:
        return RecurrenceSpec(RecurrencePattern.weekly, 1)
    if t in {"monthly", "every month"}:
        return RecurrenceSpec(RecurrencePattern.monthly, 1)
    if t in {"yearly", "annually", "every year"}:
        return RecurrenceSpec(RecurrencePattern.yearly, 1)

    m = _EVERY_N_RE.search(t)
    if m:
        unit = m.group("unit").rstrip("s")
        if m.group("other"):
            n = 2
        else:
            n = int(m.group("n")) if m.group("n") else 1
        if n < 1:
            raise RecurrenceError("Interval must be at least 1")
        return RecurrenceSpec(_UNIT_PATTERNS[unit], n)

    # A named weekday repeats weekly, anchored on the task's due date.
    if _WEEKDAY_RE.search(t):
        return RecurrenceSpec(RecurrencePattern.weekly, 1)

    return None


def parse_recurrence_spec(raw) -> Optional[RecurrenceSpec]:
    """Validate a recurrence spec from user input (dict, text or RecurrenceSpec).

    Raises RecurrenceError on anything unusable; None/empty means "no recurrence".
    """
    if raw is None:
        return None
    if isinstance(raw, RecurrenceSpec):
        return raw
    if isinstance(raw, str):
        if not raw.strip():
            return None
        spec = parse_recurring_pattern(raw)
        if spec is None:
            raise RecurrenceError(
                "Invalid recurrence. Examples: 'daily', 'every 2 weeks', 'every monday', 'every 3 months', 'yearly'"
            )
        return spec
    if not isinstance(raw, dict):
        raise RecurrenceError("Recurrence must be an object or a phrase")
    if not raw:
        return None

    pattern_raw = str(raw.get("pattern") or "").strip().lower()
    try:
        pattern = RecurrencePattern(pattern_raw)
    except ValueError as e:
        raise RecurrenceError(f"Unsupported recurrence pattern: {pattern_raw!r}") from e

    interval_raw = raw.get("interval", 1)
    if interval_raw is None:
        interval_raw = 1
    if isinstance(interval_raw, bool):
        raise RecurrenceError("Interval must be a whole number")
    try:
        interval = int(interval_raw)
    except (TypeError, ValueError) as e:
        raise RecurrenceError("Interval must be a whole number") from e
    if interval < 1:
        raise RecurrenceError("Interval must be at least 1")

    end_raw = raw.get("endDate", raw.get("end_date"))
    end_date = None
    if end_raw not in (None, ""):
        end_date = parse_date(end_raw)
        if end_date is None:
            raise RecurrenceError(f"Invalid end date: {end_raw!r}")

    return RecurrenceSpec(pattern, interval, end_date)


def add_months(d: date, months: int) -> date:
    """Calendar month arithmetic that overflows rather than clamps.

    Jan 31 + 1 month lands on Mar 2 (or Mar 3 outside leap years).
    """
    y, m0 = divmod(d.month - 1 + int(months), 12)
    first = date(d.year + y, m0 + 1, 1)
    return first + timedelta(days=d.day - 1)


def advance_date(d: date, spec: RecurrenceSpec) -> date:
    n = int(spec.interval)
    if spec.pattern == RecurrencePattern.daily:
        return d + timedelta(days=n)
    if spec.pattern == RecurrencePattern.weekly:
        return d + timedelta(days=7 * n)
    if spec.pattern == RecurrencePattern.monthly:
        return add_months(d, n)
    if spec.pattern == RecurrencePattern.yearly:
        return add_months(d, 12 * n)
    raise RecurrenceError(f"Unsupported recurrence pattern: {spec.pattern}")


def compute_next_due_date(task) -> Optional[date]:
    """Next due date for a task that was just completed, or None.

    None covers both the terminal case (past the recurrence end date) and missing
    preconditions (no due date, no or unreadable spec). Neither is an error.
    """
    raw = getattr(task, "recurring", None)
    if not raw:
        return None

    current = parse_date(getattr(task, "due_date", None))
    if current is None:
        return None

    try:
        spec = parse_recurrence_spec(raw)
    except RecurrenceError as e:
        logger.warning("Ignoring unreadable recurrence on task %s: %s", getattr(task, "id", "?"), e)
        return None
    if spec is None:
        return None

    nxt = advance_date(current, spec)
    if spec.end_date is not None and nxt > spec.end_date:
        return None
    return nxt


def _reset_subtasks(items) -> list:
    out = []
    for st in items or []:
        if isinstance(st, dict):
            d = copy.deepcopy(st)
            d["completed"] = False
            out.append(d)
    return out


def _reset_reminders(items) -> list:
    out = []
    for r in items or []:
        if isinstance(r, dict):
            d = copy.deepcopy(r)
            d["sent"] = False
            d.pop("sentAt", None)
            out.append(d)
    return out


def build_next_instance(task: Task, next_due: date) -> Task:
    """Materialize the next occurrence of `task` (not added to any session)."""
    return Task(
        title=task.title,
        description=task.description,
        priority=task.priority,
        category=task.category,
        status=TaskStatus.pending.value,
        due_date=next_due.isoformat(),
        due_time=task.due_time,
        estimated_time=task.estimated_time,
        assigned_to=task.assigned_to,
        created_by=task.created_by,
        labels=list(task.labels or []),
        subtasks=_reset_subtasks(task.subtasks),
        comments=[],  # discussion belongs to the occurrence it was written on
        attachments=list(task.attachments or []),
        reminders=_reset_reminders(task.reminders),
        project=task.project,
        section=task.section,
        recurring=copy.deepcopy(task.recurring),
        recurring_parent=int(task.id) if task.id is not None else None,
        completed_date=None,
        task_type=TaskType.recurring_instance.value,
    )
