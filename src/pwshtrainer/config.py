"""Runtime settings and logging setup."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

HOME_ENV = "PWSHTRAINER_HOME"
LOG_LEVEL_ENV = "PWSHTRAINER_LOG_LEVEL"
DEFAULT_DIR_NAME = ".pwshtrainer"
DB_FILE_NAME = "pwshtrainer.db"
LOG_FILE_NAME = "pwshtrainer.log"
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_WIDTH = 100
DEFAULT_HEIGHT = 30
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one run."""

    data_dir: Path
    log_level: str = DEFAULT_LOG_LEVEL
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    persist: bool = True

    @property
    def db_path(self) -> Path:
        return self.data_dir / DB_FILE_NAME

    @property
    def log_path(self) -> Path:
        return self.data_dir / LOG_FILE_NAME


def _normalize_level(value: str) -> str:
    """Upper-case a level name, rejecting names `logging` does not know."""
    level = value.strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"Unknown log level: {value}")
    return level


def resolve_settings(
    *,
    data_dir: str | None = None,
    log_level: str | None = None,
    persist: bool = True,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Merge defaults, environment, and explicit (CLI) values, later winning."""
    environ = os.environ if env is None else env

    resolved_dir = Path.home() / DEFAULT_DIR_NAME
    if environ.get(HOME_ENV):
        resolved_dir = Path(environ[HOME_ENV]).expanduser()
    if data_dir:
        resolved_dir = Path(data_dir).expanduser()

    level = DEFAULT_LOG_LEVEL
    if environ.get(LOG_LEVEL_ENV):
        level = _normalize_level(environ[LOG_LEVEL_ENV])
    if log_level:
        level = _normalize_level(log_level)

    return Settings(data_dir=resolved_dir, log_level=level, persist=persist)


def configure_logging(settings: Settings) -> None:
    """Send package logs to a file in the data directory.

    The terminal belongs to the UI, so nothing is logged to stderr.
    """
    root = logging.getLogger("pwshtrainer")
    root.setLevel(settings.log_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    try:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(settings.log_path, encoding="utf-8")
    except OSError:
        handler = logging.NullHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.propagate = False
