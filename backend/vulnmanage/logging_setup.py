# backend/vulnmanage/logging_setup.py
from __future__ import annotations

import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, List, Optional, Union

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_LOG_DIR = REPO_ROOT / "var" / "logs"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(process)d] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# SQL echo and request lines drown out the compiler's debug output.
CHATTY_LOGGERS = ("sqlalchemy.engine", "werkzeug", "urllib3")

LevelInput = Union[str, int, None]


class TimestampRolloverHandler(RotatingFileHandler):
    """Size-limited log file; each rollover opens ``<prefix>-<timestamp>.log``."""

    def __init__(self, directory: Union[str, Path], prefix: str = "vulnmanage", max_bytes: int = 1_000_000):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        super().__init__(self._stamped_path(), maxBytes=max_bytes, backupCount=0, encoding="utf-8", errors="replace")

    def _stamped_path(self) -> str:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")[:-3]
        return os.fspath(self.directory / f"{self.prefix}-{stamp}.log")

    def doRollover(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None
        self.baseFilename = self._stamped_path()
        self.mode = "a"
        self.stream = self._open()


def resolve_level(level: LevelInput = None) -> int:
    """Numeric level from an int, a level name, or ``LOG_LEVEL`` (default INFO)."""
    if isinstance(level, int):
        return level
    name = level if isinstance(level, str) else os.getenv("LOG_LEVEL", "INFO")
    resolved = logging.getLevelName(name.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def quiet_loggers(names: Iterable[str], level: int = logging.WARNING) -> None:
    for name in names:
        logging.getLogger(name).setLevel(level)


def start_log(
    *,
    app_name: str = "vulnmanage",
    log_dir: Optional[Union[str, Path]] = None,
    level: LevelInput = None,
    to_console: bool = True,
    max_bytes: int = 1_000_000,
    quiet: Iterable[str] = CHATTY_LOGGERS,
) -> logging.Logger:
    """
    Route every ``logging.getLogger(__name__)`` logger to one place.

    Files land in ``log_dir``, ``LOG_DIR`` or ``<repo>/var/logs``.  Calling
    this again replaces the handlers instead of adding duplicates.  The
    ``quiet`` loggers are held at WARNING unless the root level is DEBUG.
    """
    directory = Path(log_dir or os.getenv("LOG_DIR") or DEFAULT_LOG_DIR)

    root = logging.getLogger()
    root.setLevel(resolve_level(level))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: List[logging.Handler] = [TimestampRolloverHandler(directory, prefix=app_name, max_bytes=max_bytes)]
    if to_console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    if root.level > logging.DEBUG:
        quiet_loggers(quiet)

    root.info("Logging started app=%s dir=%s level=%s", app_name, directory, logging.getLevelName(root.level))
    return root
