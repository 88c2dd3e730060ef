from datetime import date, datetime, timedelta
from types import SimpleNamespace
from zoneinfo import ZoneInfo

from taskflow.analytics import (
    calculate_karma,
    calculate_streak,
    completed_between,
    completion_rate,
    karma_level,
    most_productive_day,
    productivity_stats,
    week_start,
    weekly_chart_data,
)


TZ = ZoneInfo("America/Vancouver")
# Wednesday 09:00 local == 17:00 UTC.
NOW = datetime(2024, 1, 10, 9, 0, tzinfo=TZ)


def done(utc: datetime, priority="medium"):
    return SimpleNamespace(status="completed", completed_date=utc, priority=priority)


def open_task(status="pending", priority="medium"):
    return SimpleNamespace(status=status, completed_date=None, priority=priority)


def test_streak_today_and_yesterday():
    tasks = [done(datetime(2024, 1, 10, 16, 30)), done(datetime(2024, 1, 9, 20, 0))]
    assert calculate_streak(tasks, NOW) == 2


def test_streak_zero_without_completions():
    assert calculate_streak([], NOW) == 0
    assert calculate_streak([open_task()], NOW) == 0


def test_empty_today_does_not_break_streak():
    tasks = [done(datetime(2024, 1, 9, 20, 0)), done(datetime(2024, 1, 8, 20, 0))]
    assert calculate_streak(tasks, NOW) == 2


def test_gap_before_today_ends_streak():
    tasks = [done(datetime(2024, 1, 8, 20, 0))]
    assert calculate_streak(tasks, NOW) == 0


def test_streak_uses_local_calendar_days():
    # 03:00 UTC on Jan 10 is still the evening of Jan 9 in Vancouver.
    tasks = [done(datetime(2024, 1, 10, 3, 0))]
    assert calculate_streak(tasks, NOW) == 1
    assert completed_between(tasks, date(2024, 1, 9), date(2024, 1, 9), TZ) == 1


def test_streak_is_bounded():
    start = datetime(2024, 1, 10, 17, 0)
    tasks = [done(start - timedelta(days=i)) for i in range(400)]
    assert calculate_streak(tasks, NOW, max_days=365) == 365


def test_karma_single_urgent_no_streak():
    tasks = [done(datetime(2023, 6, 1, 12, 0), priority="urgent")]
    assert calculate_karma(tasks, streak=0) == 15


def test_karma_aliases_unknowns_and_streak_cap():
    tasks = [
        done(datetime(2023, 6, 1, 12, 0), priority="p1"),
        done(datetime(2023, 6, 1, 12, 0), priority="p2"),
        done(datetime(2023, 6, 1, 12, 0), priority="whatever"),
        open_task(priority="urgent"),
    ]
    assert calculate_karma(tasks, streak=0) == 3 * 5 + 10 + 7 + 3
    assert calculate_karma(tasks, streak=3) == 35 + 30
    assert calculate_karma(tasks, streak=80) == 35 + 500


def test_karma_levels():
    assert (karma_level(0).name, karma_level(0).next_threshold) == ("Beginner", 100)
    assert (karma_level(100).name, karma_level(100).next_threshold) == ("Novice", 500)
    assert karma_level(2499).name == "Advanced"
    assert (karma_level(5000).name, karma_level(5000).next_threshold) == ("Master", None)


def test_completion_rate_never_divides_by_zero():
    assert completion_rate([]) == 0.0
    tasks = [done(datetime(2024, 1, 9, 20, 0)), open_task(), open_task(), open_task("in_progress")]
    assert completion_rate(tasks) == 0.25


def test_weekly_chart_starts_on_sunday():
    assert week_start(date(2024, 1, 10)) == date(2024, 1, 7)
    assert week_start(date(2024, 1, 7)) == date(2024, 1, 7)

    tasks = [
        done(datetime(2024, 1, 7, 20, 0)),
        done(datetime(2024, 1, 10, 16, 0)),
        done(datetime(2024, 1, 10, 16, 30)),
        done(datetime(2024, 1, 6, 20, 0)),  # previous Saturday
    ]
    chart = weekly_chart_data(tasks, NOW)
    assert [d["day"] for d in chart] == ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
    assert chart[0] == {"day": "Sun", "date": "2024-01-07", "completed": 1}
    assert chart[3]["completed"] == 2
    assert sum(d["completed"] for d in chart) == 3


def test_most_productive_day_ties_go_to_first_weekday():
    assert most_productive_day([], TZ) == "Sunday"
    tasks = [
        done(datetime(2024, 1, 8, 20, 0)),  # Monday
        done(datetime(2024, 1, 12, 20, 0)),  # Friday
    ]
    assert most_productive_day(tasks, TZ) == "Monday"
    tasks.append(done(datetime(2024, 1, 5, 20, 0)))  # another Friday
    assert most_productive_day(tasks, TZ) == "Friday"


def test_productivity_stats_bundle():
    tasks = [
        done(datetime(2024, 1, 10, 16, 0), priority="p1"),
        done(datetime(2024, 1, 9, 20, 0), priority="low"),
        done(datetime(2023, 12, 20, 20, 0), priority="high"),
        open_task(),
        open_task("in_progress"),
    ]
    stats = productivity_stats(tasks, NOW)
    assert stats["total"] == 5
    assert stats["completed"] == 3
    assert stats["pending"] == 1
    assert stats["in_progress"] == 1
    assert stats["completed_today"] == 1
    assert stats["completed_this_week"] == 2
    assert stats["completed_this_month"] == 2
    assert stats["streak"] == 2
    assert stats["completion_rate"] == 0.6
    assert stats["completion_percent"] == 60
    assert stats["avg_tasks_per_day"] == 0.1
    assert stats["priority_breakdown"] == {"urgent": 1, "high": 1, "medium": 0, "low": 1}
    assert stats["karma"] == 15 + 10 + 3 + 7 + 20
    assert stats["karma_level"] == "Beginner"
    assert stats["karma_next_threshold"] == 100
