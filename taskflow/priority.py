from __future__ import annotations

import enum
from typing import Iterable, Optional


class Priority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @property
    def legacy_alias(self) -> str:
        return _LEGACY_BY_PRIORITY[self]


_RANKS = {
    Priority.low: 1,
    Priority.medium: 2,
    Priority.high: 3,
    Priority.urgent: 4,
}

# p1 is the most urgent, matching the old Todoist-style tokens.
_PRIORITY_BY_LEGACY = {
    "p1": Priority.urgent,
    "p2": Priority.high,
    "p3": Priority.medium,
    "p4": Priority.low,
}
_LEGACY_BY_PRIORITY = {v: k for k, v in _PRIORITY_BY_LEGACY.items()}


def normalize_priority(value) -> Optional[Priority]:
    """Map a canonical name, a legacy alias (p1..p4) or a Priority to the canonical enum.

    Unknown or empty values return None.
    """
    if value is None:
        return None
    if isinstance(value, Priority):
        return value
    token = str(value).strip().lower()
    if not token:
        return None
    if token in _PRIORITY_BY_LEGACY:
        return _PRIORITY_BY_LEGACY[token]
    try:
        return Priority(token)
    except ValueError:
        return None


def parse_priority(value, *, default: Priority = Priority.medium) -> Priority:
    """Strict variant for write boundaries: blank -> default, unknown -> ValueError."""
    if value is None or not str(value).strip():
        return default
    p = normalize_priority(value)
    if p is None:
        raise ValueError(f"Invalid priority: {value!r}")
    return p


def normalize_priorities(values: Iterable) -> set[Priority]:
    out: set[Priority] = set()
    for v in values or ():
        p = normalize_priority(v)
        if p is not None:
            out.add(p)
    return out


def priority_rank(value) -> int:
    """Ordering weight, 0 for unknown values."""
    p = normalize_priority(value)
    return p.rank if p is not None else 0
