"""Logging for pacrepo.

Console messages go to stderr in the same ``level: message`` shape as
the command line warnings, so stdout stays reserved for command output
such as package lists and build orders. The optional log file keeps
full records with ISO 8601 timestamps and is rotated by size.

Every module logger is a child of the ``pacrepo`` logger, so a single
``setup_logger("pacrepo", ...)`` call configures the whole package.
"""

import logging
import logging.handlers
import os
import sys
from typing import Optional

ROOT_LOGGER_NAME = "pacrepo"

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

CONSOLE_FORMAT = "%(levelname_lower)s: %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


class _ConsoleFormatter(logging.Formatter):
    """Formatter exposing the level name in lower case."""

    def format(self, record: logging.LogRecord) -> str:
        record.levelname_lower = record.levelname.lower()
        return super().format(record)


def _parse_level(level: str) -> int:
    level_upper = level.upper()
    if level_upper not in LEVELS:
        raise ValueError(
            f"Invalid log level: {level}. Must be one of: {', '.join(LEVELS)}"
        )
    return getattr(logging, level_upper)


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    log_dir: str = "~/.cache/pacrepo/logs",
    level: str = "INFO",
    log_format: Optional[str] = None,
    file_logging: bool = False,
    console_logging: bool = True,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Configure the package logger.

    Calling it again only changes the level; handlers are installed once.

    Args:
        name: Logger name, normally the package root
        log_dir: Directory of the rotating log file, ``~`` is expanded
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Format for both handlers instead of the defaults
        file_logging: Also write to ``<log_dir>/<name>.log``
        console_logging: Write to stderr
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated log files to keep

    Returns:
        Configured logger instance

    Raises:
        ValueError: If the level name is not a logging level
    """
    logger = logging.getLogger(name)
    logger.setLevel(_parse_level(level))

    if logger.handlers:
        return logger

    if file_logging:
        log_dir = os.path.expanduser(log_dir)
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, f"{name}.log"),
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(
            logging.Formatter(log_format or FILE_FORMAT, datefmt=DATE_FORMAT)
        )
        logger.addHandler(file_handler)

    if console_logging:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(
            _ConsoleFormatter(log_format or CONSOLE_FORMAT, datefmt=DATE_FORMAT)
        )
        logger.addHandler(console_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger below the package root.

    Args:
        name: Component name, e.g. ``"repos.scan"``

    Returns:
        Logger instance named ``pacrepo.<name>``
    """
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
