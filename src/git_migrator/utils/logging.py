"""Logging utilities for Git Migrator."""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

DEFAULT_COMPONENT = 'git-migrator'

CONSOLE_FORMAT = (
    '<green>{time:YYYY-MM-DD HH:mm:ss}</green> | '
    '<level>{level: <8}</level> | '
    '<cyan>{extra[component]}</cyan> | '
    '<level>{message}</level>'
)

FILE_FORMAT = (
    '{time:YYYY-MM-DD HH:mm:ss.SSS} | '
    '{level: <8} | '
    '{extra[component]} | '
    '{name}:{function}:{line} | '
    '{message}'
)


def setup_logging(
    level: str = 'INFO',
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    rotation: str = '10 MB',
    retention: str = '30 days',
    serialize: bool = False,
) -> None:
    """Route queue, tracker and engine records to stderr and an optional file.

    Every record carries a ``component`` extra; classes bind their own name
    with ``logger.bind(component=...)`` and anything else falls back to
    ``git-migrator``.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        log_format: Optional custom console format
        rotation: When the log file is rotated (size or interval)
        retention: How long rotated files are kept
        serialize: Write the log file as JSON lines instead of text
    """
    logger.remove()
    logger.configure(extra={'component': DEFAULT_COMPONENT})

    logger.add(
        sys.stderr,
        format=log_format or CONSOLE_FORMAT,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        # Dispatch tasks and tracker reporters log from several threads
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level=level,
            rotation=rotation,
            retention=retention,
            compression='gz',
            serialize=serialize,
            backtrace=True,
            diagnose=False,
            enqueue=True,
        )

    get_logger('logging').debug(
        f'Logging initialized with level {level}'
        + (f', file {log_file}' if log_file else '')
    )


def get_logger(component: str):
    """Get a logger bound to a component name.

    Args:
        component: Component name shown in log records

    Returns:
        Logger instance
    """
    return logger.bind(component=component)
