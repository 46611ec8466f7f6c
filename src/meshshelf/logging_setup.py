"""Logging configuration for meshshelf.

Every module logs through ``logging.getLogger(__name__)``, so configuring
the ``meshshelf`` package logger covers the catalog, the scanner and the
import pipeline. Staging writes run in worker threads, which is why the
file format carries the thread name.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from meshshelf.env_settings import get_env_settings
from meshshelf.paths import log_dir

LOGGER_NAME = "meshshelf"
LOG_FILENAME = "meshshelf.log"

FILE_FORMAT = "%(asctime)s | %(levelname)-7s | %(threadName)s | [%(name)s] %(message)s"

# Console handler and its configured level, for set_console_quiet()
_console_handler: logging.Handler | None = None
_console_level = logging.INFO


def _resolve_level(log_level: str | None) -> int:
    name = log_level if log_level is not None else get_env_settings().app.log_level
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def default_log_file() -> Path:
    """Log file inside the per-user log directory."""
    return log_dir() / LOG_FILENAME


def setup_logging(
    log_level: str | None = "INFO",
    log_file: Path | str | None = None,
    rich_console: bool = True,
    quiet_console: bool = False,
) -> logging.Logger:
    """
    Configure the meshshelf package logger.

    Calling it again replaces the previous handlers.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR. None reads LOG_LEVEL
            from the environment; unknown names fall back to INFO.
        log_file: File that receives every record at DEBUG level
        rich_console: Pretty console output through rich
        quiet_console: Only show WARNING and above on the console

    Returns:
        The "meshshelf" package logger
    """
    global _console_handler, _console_level
    level = _resolve_level(log_level)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if log_file else level)
    logger.handlers.clear()

    console_handler: logging.Handler
    if rich_console:
        console_handler = RichHandler(
            console=Console(stderr=True),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    _console_level = level
    console_handler.setLevel(logging.WARNING if quiet_console else level)
    logger.addHandler(console_handler)
    _console_handler = console_handler

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)

    return logger


def set_console_quiet(quiet: bool = True) -> None:
    """Show only warnings on the console, or restore the configured level.

    The log file, if any, keeps receiving everything.
    """
    if _console_handler is not None:
        _console_handler.setLevel(logging.WARNING if quiet else _console_level)
