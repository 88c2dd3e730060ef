from __future__ import annotations

import logging

from fastapi import FastAPI

from .config import get_settings
from .db import Base, SessionLocal, engine
from .logging_setup import setup_logging
from .notifications import DbNotificationSink
from .reminders import ReminderScheduler
from .routers import api_filters, api_notifications, api_requests, api_stats, api_tasks
from .utils.time_utils import Clock
from .version import APP_VERSION


settings = get_settings()

setup_logging(level=settings.logging.level, log_dir=(settings.logging.directory or None))
logger = logging.getLogger("taskflow")


app = FastAPI(title=settings.app.name, version=APP_VERSION)

app.include_router(api_tasks.router, prefix="/api/tasks", tags=["tasks"])
app.include_router(api_requests.router, prefix="/api/requests", tags=["requests"])
app.include_router(api_filters.router, prefix="/api/filters", tags=["filters"])
app.include_router(api_stats.router, prefix="/api/stats", tags=["stats"])
app.include_router(api_notifications.router, prefix="/api/notifications", tags=["notifications"])


reminder_scheduler: ReminderScheduler | None = None


@app.on_event("startup")
def on_startup() -> None:
    global reminder_scheduler

    Base.metadata.create_all(bind=engine)

    if not settings.reminders.enabled:
        logger.info("Reminder checks disabled")
        return

    reminder_scheduler = ReminderScheduler(
        SessionLocal,
        DbNotificationSink(SessionLocal),
        clock=Clock(),
        interval_seconds=int(settings.reminders.check_interval_seconds),
        window_minutes=int(settings.reminders.fire_window_minutes),
    )
    try:
        reminder_scheduler.start()
    except Exception:
        logger.exception("Failed to start reminder scheduler")
        reminder_scheduler = None
    app.state.reminder_scheduler = reminder_scheduler


@app.on_event("shutdown")
def on_shutdown() -> None:
    global reminder_scheduler
    if reminder_scheduler:
        reminder_scheduler.stop(wait=True)
        reminder_scheduler = None


@app.get("/healthz", include_in_schema=False)
def healthz():
    return {
        "status": "ok",
        "version": APP_VERSION,
        "timezone": settings.app.timezone,
        "reminders": bool(reminder_scheduler and reminder_scheduler.running),
    }
