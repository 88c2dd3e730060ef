from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import get_settings


# Default instant for a task with a due date but no due time.
END_OF_DAY = time(23, 59, 59, 999000)

_DATE_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def get_app_tz() -> ZoneInfo:
    s = get_settings()
    try:
        return ZoneInfo(s.app.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


class Clock:
    """Source of "now", pinned to one canonical timezone."""

    def __init__(self, tz: ZoneInfo | None = None):
        self.tz = tz or get_app_tz()

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def now_utc_naive(self) -> datetime:
        return self.now().astimezone(timezone.utc).replace(tzinfo=None)


class FixedClock(Clock):
    """A clock that only moves when told to. Naive instants are read in `tz`."""

    def __init__(self, at: datetime, tz: ZoneInfo | None = None):
        super().__init__(tz or (at.tzinfo if isinstance(at.tzinfo, ZoneInfo) else None))
        self._at = at if at.tzinfo is not None else at.replace(tzinfo=self.tz)
        self._at = self._at.astimezone(self.tz)

    def now(self) -> datetime:
        return self._at

    def set(self, at: datetime) -> None:
        self._at = (at if at.tzinfo is not None else at.replace(tzinfo=self.tz)).astimezone(self.tz)

    def advance(self, **kwargs) -> datetime:
        self._at = self._at + timedelta(**kwargs)
        return self._at


def now_utc() -> datetime:
    # Stored timestamps are naive UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def ensure_aware(dt: datetime, tz: ZoneInfo | None = None) -> datetime:
    if dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=tz or get_app_tz())


def to_local(dt_utc_naive: datetime, tz: ZoneInfo | None = None) -> datetime:
    zone = tz or get_app_tz()
    if dt_utc_naive.tzinfo is not None:
        return dt_utc_naive.astimezone(zone)
    return dt_utc_naive.replace(tzinfo=timezone.utc).astimezone(zone)


def parse_date(value) -> date | None:
    """Parse a calendar date. Anything malformed yields None instead of raising."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not _DATE_PREFIX_RE.match(text):
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def parse_time(value) -> time | None:
    """Parse 'HH:MM' or 'HH:MM:SS'. Malformed input yields None."""
    if value is None:
        return None
    if isinstance(value, time):
        return value
    text = str(value).strip()
    if not text:
        return None
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None


def parse_datetime(value, tz: ZoneInfo | None = None) -> datetime | None:
    """Parse an ISO datetime into an aware datetime. Naive values are read in `tz`."""
    if value is None:
        return None
    zone = tz or get_app_tz()
    if isinstance(value, datetime):
        return ensure_aware(value, zone)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    return ensure_aware(dt, zone)


def due_instant(task, tz: ZoneInfo | None = None) -> datetime | None:
    """The single instant a task is due, or None when it has no usable due date.

    Date + time when a valid time is present, otherwise the end of the due day.
    """
    zone = tz or get_app_tz()
    d = parse_date(getattr(task, "due_date", None))
    if d is None:
        return None
    t = parse_time(getattr(task, "due_time", None)) or END_OF_DAY
    return datetime.combine(d, t, tzinfo=zone)


def local_day(ts, tz: ZoneInfo | None = None) -> date | None:
    """Calendar day (in `tz`) of a stored timestamp. Naive datetimes are UTC."""
    if ts is None:
        return None
    zone = tz or get_app_tz()
    if isinstance(ts, datetime):
        dt = ts
    elif isinstance(ts, date):
        return ts
    else:
        text = str(ts).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(zone).date()
