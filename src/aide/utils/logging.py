"""Logging setup for the aide command line.

Everything goes to a rotating ``aide.log`` file. The console handler writes
to stderr so command output on stdout stays machine readable, and only
carries warnings unless the caller asks for more.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["LOG_FILE_NAME", "setup_logging", "set_file_level", "get_log_path"]

LOG_FILE_NAME = "aide.log"

_DEFAULT_LOG_DIR = Path.home() / ".aide" / "logs"
# Loggers that flood DEBUG output with connection and retry chatter.
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_file_handler: logging.handlers.RotatingFileHandler | None = None
_console_handler: logging.StreamHandler | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console_level: int | None = logging.WARNING,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Attach the file handler (and a stderr handler unless ``console_level`` is ``None``).

    ``log_dir`` wins over ``AIDE_LOG_DIR``, which wins over ``~/.aide/logs``.
    A second call is a no-op returning the current log path unless ``force``
    is set, in which case the previous handlers are closed and replaced.
    """

    global _file_handler, _console_handler
    if _file_handler is not None and not force:
        return Path(_file_handler.baseFilename)

    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / LOG_FILE_NAME
    formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [file_handler]

    console_handler = None
    if console_level is not None:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(console_level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    root_level = level if console_level is None else min(level, console_level)
    logging.basicConfig(level=root_level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _quiet_external_loggers(root_level)

    _file_handler = file_handler
    _console_handler = console_handler
    return log_path


def set_file_level(level: int) -> None:
    """Change what reaches the log file without touching the console handler."""

    if _file_handler is None:
        return
    _file_handler.setLevel(level)
    root = logging.getLogger()
    if level < root.level:
        root.setLevel(level)
        _quiet_external_loggers(level)


def get_log_path() -> Path | None:
    return Path(_file_handler.baseFilename) if _file_handler is not None else None


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    return Path(log_dir or os.environ.get("AIDE_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()


def _quiet_external_loggers(root_level: int) -> None:
    quiet_level = max(root_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
