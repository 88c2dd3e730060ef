"""Read-only productivity figures derived from a user's task history.

Everything here works at calendar-day granularity in the clock's timezone:
stored completion timestamps (naive UTC) are first mapped onto a local day and
only then compared. Nothing is persisted; callers recompute on demand.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from .models import TaskStatus, enum_value
from .priority import Priority, normalize_priority
from .utils.time_utils import ensure_aware, local_day


DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
DAY_ABBR = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

POINTS_PER_COMPLETION = 5
STREAK_POINTS_PER_DAY = 10
STREAK_BONUS_CAP = 500

PRIORITY_BONUS = {
    Priority.urgent: 10,
    Priority.high: 7,
    Priority.medium: 5,
    Priority.low: 3,
}
DEFAULT_PRIORITY_BONUS = 3

# (upper bound, level name); the last level has no upper bound.
KARMA_LEVELS = [
    (100, "Beginner"),
    (500, "Novice"),
    (1000, "Intermediate"),
    (2500, "Advanced"),
    (5000, "Expert"),
    (None, "Master"),
]


@dataclass(frozen=True)
class KarmaLevel:
    name: str
    next_threshold: Optional[int]


def _round_half_up(value: float, digits: int = 0) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def _sunday_index(d: date) -> int:
    # date.weekday() is Monday=0; the charts start weeks on Sunday.
    return (d.weekday() + 1) % 7


def week_start(d: date) -> date:
    return d - timedelta(days=_sunday_index(d))


def completed_tasks(tasks: Iterable) -> list:
    return [t for t in tasks if enum_value(getattr(t, "status", None)) == TaskStatus.completed.value]


def completion_days(tasks: Iterable, tz) -> list[date]:
    """Local completion day of every completed task that has a timestamp (duplicates kept)."""
    out = []
    for t in completed_tasks(tasks):
        d = local_day(getattr(t, "completed_date", None), tz)
        if d is not None:
            out.append(d)
    return out


def calculate_streak(tasks: Iterable, now: datetime, *, max_days: int = 365) -> int:
    """Consecutive days with at least one completion, counting back from today.

    An empty today does not break the streak; the walk starts at yesterday instead.
    """
    now = ensure_aware(now)
    days = set(completion_days(tasks, now.tzinfo))
    if not days:
        return 0

    today = now.date()
    cursor = today if today in days else today - timedelta(days=1)
    streak = 0
    while cursor in days and streak < int(max_days):
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def priority_bonus(value) -> int:
    p = normalize_priority(value)
    if p is None:
        return DEFAULT_PRIORITY_BONUS
    return PRIORITY_BONUS[p]


def calculate_karma(tasks: Iterable, streak: int) -> int:
    done = completed_tasks(tasks)
    karma = len(done) * POINTS_PER_COMPLETION
    karma += sum(priority_bonus(getattr(t, "priority", None)) for t in done)
    if streak > 0:
        karma += min(int(streak) * STREAK_POINTS_PER_DAY, STREAK_BONUS_CAP)
    return karma


def karma_level(karma: int) -> KarmaLevel:
    for bound, name in KARMA_LEVELS:
        if bound is None or karma < bound:
            return KarmaLevel(name=name, next_threshold=bound)
    return KarmaLevel(name=KARMA_LEVELS[-1][1], next_threshold=None)


def completion_rate(tasks: Iterable) -> float:
    items = list(tasks)
    if not items:
        return 0.0
    return len(completed_tasks(items)) / len(items)


def completed_between(tasks: Iterable, start: date, end: date, tz) -> int:
    """Completions whose local day falls in [start, end], both inclusive."""
    return sum(1 for d in completion_days(tasks, tz) if start <= d <= end)


def weekly_chart_data(tasks: Iterable, now: datetime) -> list[dict]:
    """One entry per day of the current Sunday-started week."""
    now = ensure_aware(now)
    start = week_start(now.date())
    counts: dict[date, int] = {}
    for d in completion_days(tasks, now.tzinfo):
        counts[d] = counts.get(d, 0) + 1

    out = []
    for i, abbr in enumerate(DAY_ABBR):
        d = start + timedelta(days=i)
        out.append({"day": abbr, "date": d.isoformat(), "completed": counts.get(d, 0)})
    return out


def day_stats(tasks: Iterable, tz) -> list[dict]:
    counts = [0] * 7
    for d in completion_days(tasks, tz):
        counts[_sunday_index(d)] += 1
    return [{"day": name, "count": counts[i]} for i, name in enumerate(DAY_NAMES)]


def most_productive_day(tasks: Iterable, tz) -> str:
    stats = day_stats(tasks, tz)
    best = stats[0]
    for entry in stats[1:]:
        # Strictly greater: ties keep the earlier weekday.
        if entry["count"] > best["count"]:
            best = entry
    return best["day"]


def priority_breakdown(tasks: Iterable) -> dict[str, int]:
    out = {p.value: 0 for p in (Priority.urgent, Priority.high, Priority.medium, Priority.low)}
    for t in completed_tasks(tasks):
        p = normalize_priority(getattr(t, "priority", None))
        if p is not None:
            out[p.value] += 1
    return out


def productivity_stats(tasks: Iterable, now: datetime, *, max_streak_days: int = 365) -> dict:
    items = list(tasks)
    now = ensure_aware(now)
    tz = now.tzinfo
    today = now.date()

    statuses = [enum_value(getattr(t, "status", None)) for t in items]
    done = completed_tasks(items)

    streak = calculate_streak(items, now, max_days=max_streak_days)
    karma = calculate_karma(items, streak)
    level = karma_level(karma)
    rate = completion_rate(items)
    last_30 = completed_between(items, today - timedelta(days=30), today, tz)

    return {
        "total": len(items),
        "completed": len(done),
        "pending": statuses.count(TaskStatus.pending.value),
        "in_progress": statuses.count(TaskStatus.in_progress.value),
        "completed_today": completed_between(items, today, today, tz),
        "completed_this_week": completed_between(items, week_start(today), today, tz),
        "completed_this_month": completed_between(items, today.replace(day=1), today, tz),
        "streak": streak,
        "completion_rate": rate,
        "completion_percent": int(_round_half_up(rate * 100)),
        "avg_tasks_per_day": _round_half_up(last_30 / 30, 1),
        "priority_breakdown": priority_breakdown(items),
        "most_productive_day": most_productive_day(items, tz),
        "karma": karma,
        "karma_level": level.name,
        "karma_next_threshold": level.next_threshold,
    }
