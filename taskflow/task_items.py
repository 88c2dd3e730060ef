"""Append/remove operations on a task's composite fields.

Every function takes the current collection and returns a new tuple; the
caller writes the result back through the store in a single update.
"""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Iterable, Optional, Sequence

from .models import ReminderType
from .utils.time_utils import parse_datetime


def new_item_id() -> str:
    return secrets.token_hex(6)


def _items(collection: Optional[Iterable]) -> tuple:
    return tuple(dict(x) for x in (collection or ()) if isinstance(x, dict))


def _remove(collection, item_id: str) -> tuple:
    items = _items(collection)
    kept = tuple(x for x in items if str(x.get("id")) != str(item_id))
    if len(kept) == len(items):
        raise KeyError(item_id)
    return kept


# ---------------------- Subtasks ----------------------


def add_subtask(subtasks, text: str, *, item_id: str | None = None) -> tuple:
    txt = str(text or "").strip()
    if not txt:
        raise ValueError("Subtask text is required")
    return _items(subtasks) + ({"id": item_id or new_item_id(), "text": txt, "completed": False},)


def set_subtask_completed(subtasks, item_id: str, completed: bool) -> tuple:
    out = []
    found = False
    for st in _items(subtasks):
        if str(st.get("id")) == str(item_id):
            st["completed"] = bool(completed)
            found = True
        out.append(st)
    if not found:
        raise KeyError(item_id)
    return tuple(out)


def remove_subtask(subtasks, item_id: str) -> tuple:
    return _remove(subtasks, item_id)


def subtask_progress(subtasks) -> tuple[int, int]:
    items = _items(subtasks)
    return sum(1 for st in items if st.get("completed")), len(items)


# ---------------------- Comments ----------------------


def add_comment(
    comments,
    *,
    author: str,
    text: str,
    when_utc: datetime,
    attachments: Sequence[str] = (),
    item_id: str | None = None,
) -> tuple:
    txt = str(text or "").strip()
    if not txt and not attachments:
        raise ValueError("Comment text is required")
    comment = {
        "id": item_id or new_item_id(),
        "author": str(author),
        "text": txt,
        "timestamp": when_utc.replace(tzinfo=None).isoformat(),
        "attachments": [str(a) for a in attachments],
    }
    return _items(comments) + (comment,)


def remove_comment(comments, item_id: str) -> tuple:
    return _remove(comments, item_id)


# ---------------------- Reminders ----------------------


def make_reminder(
    *,
    type: str,
    minutes: int | None = None,
    at: str | datetime | None = None,
    label: str | None = None,
    item_id: str | None = None,
) -> dict:
    try:
        rtype = ReminderType(str(type or "").strip().lower())
    except ValueError as e:
        raise ValueError(f"Invalid reminder type: {type!r}") from e

    reminder: dict = {"id": item_id or new_item_id(), "type": rtype.value, "label": label or "", "sent": False}
    if rtype == ReminderType.relative:
        if minutes is None or isinstance(minutes, bool):
            raise ValueError("Relative reminders need minutes")
        m = int(minutes)
        if m < 0:
            raise ValueError("Reminder minutes must be >= 0")
        reminder["minutes"] = m
    else:
        parsed = parse_datetime(at)
        if parsed is None:
            raise ValueError("Absolute reminders need a valid datetime")
        reminder["datetime"] = parsed.isoformat()
    return reminder


def add_reminder(reminders, reminder: dict) -> tuple:
    return _items(reminders) + (dict(reminder),)


def remove_reminder(reminders, item_id: str) -> tuple:
    return _remove(reminders, item_id)


def mark_reminder_sent(reminders, item_id: str, *, when_utc: datetime) -> tuple:
    out = []
    found = False
    for r in _items(reminders):
        if str(r.get("id")) == str(item_id):
            r["sent"] = True
            r["sentAt"] = when_utc.replace(tzinfo=None).isoformat()
            found = True
        out.append(r)
    if not found:
        raise KeyError(item_id)
    return tuple(out)


# ---------------------- Labels / attachments ----------------------


def normalize_labels(labels: Iterable[str] | None) -> tuple:
    seen: list[str] = []
    for raw in labels or ():
        name = str(raw or "").strip()
        if name and name not in seen:
            seen.append(name)
    return tuple(seen)


def add_label(labels, name: str) -> tuple:
    return normalize_labels(list(labels or ()) + [name])


def remove_label(labels, name: str) -> tuple:
    return tuple(x for x in normalize_labels(labels) if x != str(name).strip())


def add_attachment(attachments, uri: str) -> tuple:
    u = str(uri or "").strip()
    if not u:
        raise ValueError("Attachment URI is required")
    return tuple(attachments or ()) + (u,)


def remove_attachment(attachments, uri: str) -> tuple:
    items = tuple(attachments or ())
    if uri not in items:
        raise KeyError(uri)
    return tuple(x for x in items if x != uri)


# ---------------------- Store boundary ----------------------


def _require_dicts(collection, what: str) -> list[dict]:
    items = list(collection or ())
    for x in items:
        if not isinstance(x, dict):
            raise ValueError(f"Each {what} must be an object")
    return items


def normalize_subtasks(subtasks) -> tuple:
    """Give every subtask an id and a boolean `completed`; blank text is rejected."""
    out = []
    for st in _require_dicts(subtasks, "subtask"):
        (item,) = add_subtask((), st.get("text"), item_id=(str(st.get("id") or "") or None))
        item["completed"] = bool(st.get("completed"))
        out.append(item)
    return tuple(out)


def normalize_comments(comments) -> tuple:
    out = []
    for c in _require_dicts(comments, "comment"):
        item = dict(c)
        item["id"] = str(item.get("id") or "") or new_item_id()
        item["attachments"] = [str(a) for a in (item.get("attachments") or [])]
        out.append(item)
    return tuple(out)


def normalize_reminders(reminders) -> tuple:
    """Validate reminders through make_reminder, keeping ids and sent state."""
    out = []
    for r in _require_dicts(reminders, "reminder"):
        item = make_reminder(
            type=r.get("type"),
            minutes=r.get("minutes"),
            at=r.get("datetime"),
            label=r.get("label"),
            item_id=(str(r.get("id") or "") or None),
        )
        item["sent"] = bool(r.get("sent"))
        if item["sent"] and r.get("sentAt"):
            item["sentAt"] = r["sentAt"]
        out.append(item)
    return tuple(out)
