from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

import taskflow.models  # noqa: F401  (registers tables on Base)
from taskflow.config import get_settings
from taskflow.db import Base
from taskflow.utils.time_utils import FixedClock


TZ = ZoneInfo("America/Vancouver")


@pytest.fixture(autouse=True)
def settings_tmp(tmp_path, monkeypatch):
    """Isolate settings per test run."""
    path = tmp_path / "settings.yml"
    path.write_text(
        """
app:
  name: "Taskflow"
  timezone: "America/Vancouver"
  base_url: ""
database:
  path: "{db}"
reminders:
  enabled: false
  check_interval_seconds: 60
  fire_window_minutes: 2
tasks:
  completed_visible_hours: 24
  streak_max_days: 365
logging:
  level: "INFO"
  directory: ""
""".format(db=str(tmp_path / "settings.db")).lstrip()
    )
    monkeypatch.setenv("TASKFLOW_SETTINGS", str(path))
    for name in ("TASKFLOW_TIMEZONE", "TASKFLOW_BASE_URL", "PORT", "TASKFLOW_PORT"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield path
    get_settings.cache_clear()


def make_engine(db_path: str):
    engine = create_engine(
        f"sqlite+pysqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(str(tmp_path / "test.db"))
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 1, 10, 9, 0, tzinfo=TZ))
