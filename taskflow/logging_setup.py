from __future__ import annotations

import logging
import threading
from datetime import date
from pathlib import Path


TASKFLOW_LOGGERS = ("taskflow", "taskflow.crud", "taskflow.reminders", "taskflow.recurrence", "taskflow.delegation")

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _safe_level(level: str | None) -> int:
    return getattr(logging, (level or "INFO").strip().upper(), logging.INFO)


class DailyDateFileHandler(logging.Handler):
    """Append to <dir>/taskflow-YYYY-MM-DD.log, switching files when the day changes."""

    def __init__(self, *, base_dir: Path):
        super().__init__()
        self.base_dir = Path(base_dir)
        self._lock = threading.RLock()
        self._day: date | None = None
        self._stream = None

    def _roll(self, today: date) -> None:
        if self._stream is not None:
            self._stream.close()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        path = self.base_dir / f"taskflow-{today.isoformat()}.log"
        self._stream = open(path, "a", encoding="utf-8", buffering=1)
        self._day = today

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            with self._lock:
                today = date.today()
                if today != self._day:
                    self._roll(today)
                self._stream.write(msg + "\n")
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        with self._lock:
            if self._stream is not None:
                self._stream.close()
                self._stream = None
        super().close()


_FILE_HANDLER: DailyDateFileHandler | None = None


def setup_logging(*, level: str = "INFO", log_dir: str | None = None) -> None:
    """Stdout logging, plus a daily file under `log_dir` when one is configured.

    Calling it again only adjusts the level.
    """
    global _FILE_HANDLER

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)
    root = logging.getLogger()
    root.setLevel(_safe_level(level))

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        sh = logging.StreamHandler()
        sh.setFormatter(formatter)
        root.addHandler(sh)

    if log_dir and _FILE_HANDLER is None:
        _FILE_HANDLER = DailyDateFileHandler(base_dir=Path(log_dir))
        _FILE_HANDLER.setFormatter(formatter)
        root.addHandler(_FILE_HANDLER)

    # uvicorn and apscheduler go through the root handlers too.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "apscheduler"):
        logging.getLogger(name).propagate = True


def apply_log_level(level: str) -> None:
    lvl = _safe_level(level)
    logging.getLogger().setLevel(lvl)
    for name in TASKFLOW_LOGGERS:
        logging.getLogger(name).setLevel(lvl)
