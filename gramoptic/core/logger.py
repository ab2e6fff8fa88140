# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Event log for gram-optic.

Every component logs through the ``gramoptic`` logger hierarchy. Lines are
appended as ``[YYYY-MM-DD HH:MM:SS] message``. The file handler reopens the
log when an external rotator moves it away.
"""

import logging
import sys
from logging.handlers import WatchedFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "gramoptic"

LOG_FORMAT = "[%(asctime)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class EventLogFormatter(logging.Formatter):
    """``[time] message``, with ``ERROR:``/``WARNING:`` prefixes for problems"""

    def __init__(self):
        super().__init__(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    def formatMessage(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            record.message = f"{record.levelname}: {record.message}"
        return super().formatMessage(record)


def parse_level(level: str) -> int:
    """Convert string level to logging constant"""
    return _LEVELS.get(level.upper(), logging.INFO)


def _open_file_handler(path: Path) -> Optional[logging.Handler]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return WatchedFileHandler(path, mode="a", encoding="utf-8")
    except OSError:
        return None


def setup_logging(
    log_file: Optional[Path] = None,
    fallback_log_file: Optional[Path] = None,
    level: str = "INFO",
    console: bool = True,
) -> logging.Logger:
    """
    Configure the ``gramoptic`` logger.

    Args:
        log_file: Primary event log
        fallback_log_file: Used when log_file can't be opened for append
        level: Log level name
        console: Also write lines to stdout

    Returns:
        The configured root gram-optic logger
    """
    logger = logging.getLogger(ROOT_LOGGER)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(parse_level(level))
    logger.propagate = False
    formatter = EventLogFormatter()

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    file_handler = None
    for candidate in (log_file, fallback_log_file):
        if candidate is None:
            continue
        file_handler = _open_file_handler(Path(candidate))
        if file_handler is not None:
            break

    if file_handler is not None:
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    elif log_file is not None or fallback_log_file is not None:
        logger.warning("Event log not writable, logging to console only")

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


def setup_logging_from_config(config, console: Optional[bool] = None) -> logging.Logger:
    """Configure logging from a GramOpticConfig"""
    return setup_logging(
        log_file=config.paths.log_file,
        fallback_log_file=config.paths.fallback_log_file,
        level=config.observability.log_level,
        console=config.observability.console if console is None else console,
    )


def get_logger(name: str) -> logging.Logger:
    """Child logger of the gram-optic hierarchy"""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
