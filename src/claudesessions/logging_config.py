"""Centralized logging configuration for claude-sessions.

Every module gets its logger through get_logger(__name__) so the whole
package hangs off the "claudesessions" logger. The CLI calls
setup_logging() exactly once; library users may configure logging
themselves instead.

Usage:
    # In the entry point (cli.py):
    from .logging_config import setup_logging
    setup_logging(level="INFO")

    # In any module:
    from .logging_config import get_logger
    logger = get_logger(__name__)
    logger.info("Reclaimed stale session %s", session_id)
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

__all__ = [
    "setup_logging",
    "get_logger",
]

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    level: str = "WARNING",
    format_string: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """Configure logging for claude-sessions.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: Custom format string (default includes timestamp, name, level, message)
        log_file: Optional file path to write logs to (in addition to stderr)

    Raises:
        ValueError: If level is not a known logging level

    Note:
        - Logs go to stderr so they never mix with `claude-ls --json` output
        - File logging appends (mode='a'); several sessions may share one file
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    if format_string is None:
        format_string = DEFAULT_FORMAT

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='a'))

    logging.basicConfig(
        level=numeric_level,
        format=format_string,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logging.getLogger("claudesessions").setLevel(numeric_level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name.

    The logger name is prefixed with "claudesessions." unless it already
    carries the package prefix.

    Args:
        name: Module name (typically __name__ from the calling module)

    Returns:
        A logger instance for the module

    Example:
        >>> logger = get_logger("registry")
        >>> logger.name
        'claudesessions.registry'
    """
    if name.startswith("claudesessions."):
        name = name[len("claudesessions."):]

    if name == "claudesessions":
        return logging.getLogger(name)

    return logging.getLogger(f"claudesessions.{name}")
