from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .priority import normalize_priorities, normalize_priority
from .utils.time_utils import parse_date


class FilterCriteria(BaseModel):
    """Declarative task filter. Every field is optional; present fields are ANDed."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    priorities: Optional[list[str]] = None
    labels: Optional[list[str]] = None
    categories: Optional[list[str]] = None
    due_within_days: Optional[int] = Field(default=None, alias="dueWithinDays", ge=0)
    estimated_time_max: Optional[int] = Field(default=None, alias="estimatedTimeMax", ge=0)
    has_subtasks: Optional[bool] = Field(default=None, alias="hasSubtasks")
    has_reminders: Optional[bool] = Field(default=None, alias="hasReminders")
    is_recurring: Optional[bool] = Field(default=None, alias="isRecurring")

    @classmethod
    def from_raw(cls, raw: Any) -> "FilterCriteria":
        if raw is None:
            return cls()
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, dict):
            raise ValueError("Filter criteria must be an object")
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise ValueError(f"Invalid filter criteria: {e.errors()[0].get('msg', 'invalid')}") from e

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    @property
    def is_empty(self) -> bool:
        # Empty lists come from untouched editor fields and do not constrain anything.
        return not any(
            [
                self.priorities,
                self.labels,
                self.categories,
                self.due_within_days is not None,
                self.estimated_time_max is not None,
                self.has_subtasks is not None,
                self.has_reminders is not None,
                self.is_recurring is not None,
            ]
        )


def _presence_ok(wanted: Optional[bool], present: bool) -> bool:
    if wanted is None:
        return True
    return present if wanted else not present


def matches_criteria(task, criteria, today: date) -> bool:
    """Evaluate `criteria` against one task. Pure; `today` is the local calendar day."""
    c = FilterCriteria.from_raw(criteria)
    if c.is_empty:
        return True

    if c.priorities:
        wanted = normalize_priorities(c.priorities)
        p = normalize_priority(getattr(task, "priority", None))
        if p is None or p not in wanted:
            return False

    if c.labels:
        task_labels = {str(x) for x in (getattr(task, "labels", None) or [])}
        if not task_labels.intersection(c.labels):
            return False

    if c.categories:
        if getattr(task, "category", None) not in c.categories:
            return False

    if c.due_within_days is not None:
        due = parse_date(getattr(task, "due_date", None))
        if due is None:
            return False
        if not (today <= due <= today + timedelta(days=int(c.due_within_days))):
            return False

    if c.estimated_time_max is not None:
        est = getattr(task, "estimated_time", None)
        if est is None or int(est) > int(c.estimated_time_max):
            return False

    if not _presence_ok(c.has_subtasks, bool(getattr(task, "subtasks", None))):
        return False
    if not _presence_ok(c.has_reminders, bool(getattr(task, "reminders", None))):
        return False
    if not _presence_ok(c.is_recurring, bool(getattr(task, "recurring", None))):
        return False

    return True


def apply_filter(tasks: Iterable, criteria, today: date) -> list:
    c = FilterCriteria.from_raw(criteria)
    return [t for t in tasks if matches_criteria(t, c, today)]


@dataclass(frozen=True)
class PresetFilter:
    id: str
    name: str
    criteria: FilterCriteria

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "criteria": self.criteria.to_dict()}


PRESET_FILTERS: tuple[PresetFilter, ...] = (
    PresetFilter("preset-p1", "P1 Urgent", FilterCriteria(priorities=["urgent", "p1"])),
    PresetFilter("preset-week", "This Week", FilterCriteria(due_within_days=7)),
    PresetFilter("preset-client", "Client Work", FilterCriteria(labels=["client-work", "urgent"])),
    PresetFilter(
        "preset-quick",
        "Quick Wins",
        FilterCriteria(priorities=["low", "p4", "medium", "p3"], estimated_time_max=30),
    ),
    PresetFilter("preset-recurring", "Recurring", FilterCriteria(is_recurring=True)),
)


def get_preset(preset_id: str) -> Optional[PresetFilter]:
    for p in PRESET_FILTERS:
        if p.id == preset_id:
            return p
    return None
