from __future__ import annotations

from datetime import date

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
MONTH_ABBR = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


def due_in_phrase(minutes: int) -> str:
    """Time-remaining wording used by reminder notifications."""
    m = max(0, int(minutes))
    if m == 0:
        return "is due now!"
    if m < 60:
        return f"is due in {_plural(m, 'minute')}"
    if m < 24 * 60:
        return f"is due in {_plural(m // 60, 'hour')}"
    return f"is due in {_plural(m // (24 * 60), 'day')}"


def overdue_label(days: int) -> str:
    if days <= 0:
        return "Overdue"
    return f"{_plural(days, 'day')} overdue"


def month_day_label(d: date) -> str:
    return f"{MONTH_ABBR[d.month - 1]} {d.day}"


def full_date_label(d: date) -> str:
    return f"{MONTH_ABBR[d.month - 1]} {d.day}, {d.year}"


def weekday_label(d: date) -> str:
    return WEEKDAY_NAMES[d.weekday()]
