from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import BaseModel, Field


DEFAULT_SETTINGS_PATH = os.environ.get("TASKFLOW_SETTINGS", "settings.yml")


class AppSettings(BaseModel):
    name: str = "Taskflow"
    # Every "today"/"overdue" decision is made in this one zone, not the viewer's.
    timezone: str = "America/Vancouver"
    host: str = "0.0.0.0"  # nosec B104
    port: int = 8888
    base_url: str = ""


class DatabaseSettings(BaseModel):
    path: str = "taskflow.db"


class ReminderSettings(BaseModel):
    enabled: bool = True
    check_interval_seconds: int = 60

    # Tolerance after the nominal fire time during which a reminder still counts as "due now".
    fire_window_minutes: int = 2


class TaskSettings(BaseModel):
    # Completed tasks drop out of the default views this long after completion.
    completed_visible_hours: int = 24
    streak_max_days: int = 365


class LoggingSettings(BaseModel):
    level: str = "INFO"
    # Empty means stdout only.
    directory: str = ""


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    reminders: ReminderSettings = Field(default_factory=ReminderSettings)
    tasks: TaskSettings = Field(default_factory=TaskSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _load_yaml(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}
    with open(p, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("settings.yml must contain a YAML mapping at the root")
    return data


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings_path = os.environ.get("TASKFLOW_SETTINGS", DEFAULT_SETTINGS_PATH)
    raw = _load_yaml(settings_path)
    s = Settings.model_validate(raw)

    tz_env = os.environ.get("TASKFLOW_TIMEZONE")
    if tz_env:
        s.app.timezone = str(tz_env).strip()

    base_url_env = os.environ.get("TASKFLOW_BASE_URL")
    if base_url_env:
        s.app.base_url = str(base_url_env).strip()

    port_env = os.environ.get("PORT") or os.environ.get("TASKFLOW_PORT")
    if port_env:
        try:
            s.app.port = int(port_env)
        except ValueError:
            pass

    return s
