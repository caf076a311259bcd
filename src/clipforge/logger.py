"""
Logging for ClipForge.

One ``clipforge`` logger writes progress lines to stderr. INFO lines are
printed bare so the emoji markers used by the export steps stay readable;
the other levels carry a clock time and an emoji tag. ``--log-file`` (or
``configure_file_logging``) mirrors the same records into a file with full
context.

Level comes from LOG_LEVEL (default INFO); VERBOSE=true forces DEBUG.

Usage:
    from clipforge.logger import logger, log_success

    logger.info("🎬 Resolving composition")
    log_success("Timeline written")
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

LOGGER_NAME = "clipforge"

CONSOLE_FORMATS = {
    logging.DEBUG: "%(asctime)s 🔍 %(name)s: %(message)s",
    logging.INFO: "%(message)s",
    logging.WARNING: "%(asctime)s ⚠️  %(message)s",
    logging.ERROR: "%(asctime)s ❌ %(message)s",
    logging.CRITICAL: "%(asctime)s ❌ CRITICAL %(message)s",
}
FILE_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


def get_log_level() -> int:
    if os.environ.get("VERBOSE", "").lower() in ("1", "true", "yes"):
        return logging.DEBUG
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
    # getLevelName returns "Level X" for unknown names
    return level if isinstance(level, int) else logging.INFO


class ClipForgeFormatter(logging.Formatter):
    """Console formatter with one format per level."""

    def __init__(self, datefmt: str = "%H:%M:%S"):
        super().__init__(datefmt=datefmt)
        self._by_level = {
            level: logging.Formatter(fmt, datefmt=datefmt) for level, fmt in CONSOLE_FORMATS.items()
        }

    def format(self, record: logging.LogRecord) -> str:
        formatter = self._by_level.get(record.levelno, self._by_level[logging.INFO])
        return formatter.format(record)


class FileFormatter(logging.Formatter):
    def __init__(self):
        super().__init__(fmt=FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def _file_handler(log_file: Path) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(FileFormatter())
    return handler


def setup_logger(
    name: str = LOGGER_NAME,
    log_file: Optional[Path] = None,
    level: Optional[int] = None,
) -> logging.Logger:
    """
    Return the named logger, attaching handlers the first time only.

    Args:
        name: Logger name
        log_file: Also write records here (DEBUG and up)
        level: Console level, defaults to ``get_log_level()``
    """
    log = logging.getLogger(name)
    if log.handlers:
        return log

    level = level if level is not None else get_log_level()
    log.setLevel(level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(ClipForgeFormatter())
    log.addHandler(console)

    if log_file:
        log.addHandler(_file_handler(log_file))
    return log


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    return setup_logger(name)


def configure_file_logging(log_file: Path) -> logging.Handler:
    """
    Mirror every ``clipforge`` record into ``log_file``.

    Returns the handler so the caller can remove and close it afterwards.
    """
    handler = _file_handler(log_file)
    logging.getLogger(LOGGER_NAME).addHandler(handler)
    return handler


logger = setup_logger()


def log_phase(phase: str) -> None:
    """Banner line around a major step of an export."""
    rule = "─" * 60
    logger.info(rule)
    logger.info(f"  {phase}")
    logger.info(rule)


def log_step(step: str, emoji: str = "▶") -> None:
    logger.info(f"{emoji} {step}")


def log_success(message: str) -> None:
    logger.info(f"   ✅ {message}")


def log_warning(message: str) -> None:
    logger.warning(message)


def log_error(message: str) -> None:
    logger.error(message)


def log_debug(message: str) -> None:
    logger.debug(message)
