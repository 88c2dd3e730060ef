from __future__ import annotations

import argparse
import json
import sys

from .analytics import productivity_stats
from .config import get_settings
from .crud import list_tasks_for_assignee, normalize_email
from .db import Base, SessionLocal, engine
from .logging_setup import setup_logging
from .notifications import DbNotificationSink, LoggingNotificationSink
from .reminders import ReminderScheduler
from .utils.time_utils import Clock


def _check_reminders(*, user: str | None, log_only: bool) -> int:
    s = get_settings()
    sink = LoggingNotificationSink() if log_only else DbNotificationSink(SessionLocal)
    sched = ReminderScheduler(
        SessionLocal,
        sink,
        clock=Clock(),
        window_minutes=int(s.reminders.fire_window_minutes),
        user_email=user,
    )
    fired = sched.check_due_reminders()
    print(json.dumps([ev.to_dict() for ev in fired], indent=2))
    return len(fired)


def _stats(*, user: str) -> dict:
    s = get_settings()
    with SessionLocal() as db:
        tasks = list_tasks_for_assignee(db, user)
        return productivity_stats(tasks, Clock().now(), max_streak_days=int(s.tasks.streak_max_days))


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="taskflow")
    sub = parser.add_subparsers(dest="command", required=True)

    p_rem = sub.add_parser(
        "check-reminders",
        help="Run one reminder check now and print the notifications that fired.",
    )
    p_rem.add_argument("--user", default=None, help="Only check tasks assigned to this email")
    p_rem.add_argument(
        "--log-only",
        action="store_true",
        help="Log notifications instead of storing them (reminders are still marked sent).",
    )

    p_stats = sub.add_parser("stats", help="Print productivity stats for a user as JSON.")
    p_stats.add_argument("--user", required=True, help="Assignee email")

    args = parser.parse_args(argv)

    s = get_settings()
    setup_logging(level=s.logging.level, log_dir=(s.logging.directory or None))
    Base.metadata.create_all(bind=engine)

    if args.command == "check-reminders":
        _check_reminders(user=normalize_email(args.user), log_only=bool(args.log_only))
        return

    if args.command == "stats":
        user = normalize_email(args.user)
        if not user:
            print("--user is required", file=sys.stderr)
            sys.exit(2)
        print(json.dumps(_stats(user=user), indent=2))
        return

    parser.print_help()
    sys.exit(2)


if __name__ == "__main__":
    main()
