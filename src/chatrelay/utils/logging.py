"""Logging setup shared by the CLI and the orchestration event log."""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["setup_logging", "get_log_path", "default_log_dir", "LOG_FORMAT"]

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "chatrelay.log"

_LOG_DIR_ENV = "CHATRELAY_LOG_DIR"
_DEFAULT_LOG_DIR = Path.home() / ".chatrelay" / "logs"
# Third-party loggers capped at WARNING unless the root level is stricter.
_CHATTY_LIBRARIES = ("asyncio", "httpx", "httpcore", "openai")

_CONFIGURED = False
_LOG_PATH: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install a rotating file handler (and a stderr handler) on the root logger.

    Only the first call configures anything unless ``force`` is set; later
    calls return the active log file.

    Returns:
        Path of the log file in use.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and _LOG_PATH is not None and not force:
        return _LOG_PATH

    directory = default_log_dir(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILE_NAME

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    ]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    library_level = max(level, logging.WARNING)
    for name in _CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging` ran."""

    return _LOG_PATH


def default_log_dir(log_dir: Path | str | None = None) -> Path:
    """Pick the log directory: ``log_dir``, then ``$CHATRELAY_LOG_DIR``, then ``~/.chatrelay/logs``."""

    chosen = log_dir or os.environ.get(_LOG_DIR_ENV) or _DEFAULT_LOG_DIR
    return Path(chosen).expanduser()
