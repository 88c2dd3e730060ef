import json
import logging
from datetime import datetime

import pytest

import taskflow.cli as cli
from taskflow.config import get_settings
from taskflow.crud import create_task
from taskflow.logging_setup import TASKFLOW_LOGGERS, DailyDateFileHandler, apply_log_level, setup_logging


def test_settings_file_is_read(settings_tmp):
    s = get_settings()
    assert s.app.timezone == "America/Vancouver"
    assert s.reminders.enabled is False
    assert s.tasks.completed_visible_hours == 24


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("TASKFLOW_TIMEZONE", "Europe/Berlin")
    monkeypatch.setenv("TASKFLOW_BASE_URL", "https://tasks.example")
    monkeypatch.setenv("PORT", "9000")
    get_settings.cache_clear()
    s = get_settings()
    assert s.app.timezone == "Europe/Berlin"
    assert s.app.base_url == "https://tasks.example"
    assert s.app.port == 9000


def test_bad_port_is_ignored(monkeypatch):
    monkeypatch.setenv("TASKFLOW_PORT", "http")
    get_settings.cache_clear()
    assert get_settings().app.port == 8888


def test_missing_file_gives_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("TASKFLOW_SETTINGS", str(tmp_path / "nope.yml"))
    get_settings.cache_clear()
    s = get_settings()
    assert s.app.name == "Taskflow"
    assert s.reminders.enabled is True
    assert s.reminders.fire_window_minutes == 2


def test_non_mapping_settings_rejected(tmp_path, monkeypatch):
    path = tmp_path / "list.yml"
    path.write_text("- just\n- a list\n")
    monkeypatch.setenv("TASKFLOW_SETTINGS", str(path))
    get_settings.cache_clear()
    with pytest.raises(ValueError):
        get_settings()


def test_daily_file_handler_writes_dated_file(tmp_path):
    handler = DailyDateFileHandler(base_dir=tmp_path / "logs")
    handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    log = logging.getLogger("taskflow.test.filehandler")
    log.addHandler(handler)
    log.setLevel(logging.INFO)
    try:
        log.info("hello file")
    finally:
        log.removeHandler(handler)
        handler.close()

    expected = tmp_path / "logs" / f"taskflow-{datetime.now().strftime('%Y-%m-%d')}.log"
    assert expected.exists()
    assert "INFO hello file" in expected.read_text(encoding="utf-8")


def test_setup_logging_is_idempotent():
    setup_logging(level="INFO")
    before = len(logging.getLogger().handlers)
    setup_logging(level="DEBUG")
    assert len(logging.getLogger().handlers) == before
    assert logging.getLogger().level == logging.DEBUG
    setup_logging(level="INFO")


@pytest.fixture
def cli_db(engine, session_factory, monkeypatch):
    monkeypatch.setattr(cli, "engine", engine)
    monkeypatch.setattr(cli, "SessionLocal", session_factory)
    return session_factory


def test_cli_stats(cli_db, capsys):
    with cli_db() as db:
        create_task(db, assigned_to="ana@example.com", title="One")
    cli.main(["stats", "--user", "Ana@Example.com"])
    out = json.loads(capsys.readouterr().out)
    assert out["total"] == 1
    assert out["completed"] == 0


def test_cli_check_reminders_with_nothing_due(cli_db, capsys):
    with cli_db() as db:
        create_task(db, assigned_to="ana@example.com", title="Undated")
    cli.main(["check-reminders", "--log-only"])
    assert json.loads(capsys.readouterr().out) == []


def test_apply_log_level_updates_named_loggers():
    before = logging.getLogger().level
    try:
        apply_log_level("warning")
        assert logging.getLogger().level == logging.WARNING
        assert logging.getLogger("taskflow.reminders").level == logging.WARNING
    finally:
        apply_log_level(logging.getLevelName(before))
        for name in TASKFLOW_LOGGERS:
            logging.getLogger(name).setLevel(logging.NOTSET)
