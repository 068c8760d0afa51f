"""Process-wide logging setup."""

import logging
import os
import sys
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def parse_level(name: Optional[str]) -> int:
    """Map a config level name to a logging level, defaulting to INFO."""
    return _LEVELS.get((name or "").strip().upper(), logging.INFO)


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_path: Optional[Union[str, Path]] = None,
    console: bool = False,
) -> logging.Handler:
    """
    Install the root handler used by the toolkit.

    Logs go to ``log_path`` when it can be opened for appending, otherwise
    to stderr so the interactive session still sees warnings.

    Args:
        level: Logging level or a level name from the config file
        log_path: Optional log file path
        console: Also echo bare messages to stderr when logging to a file

    Returns:
        The primary (file or stderr) handler
    """
    if isinstance(level, str):
        level = parse_level(level)

    handler: logging.Handler
    handler = logging.StreamHandler(sys.stderr)
    if log_path:
        log_path = Path(log_path)
        parent = log_path.parent
        if (log_path.exists() and os.access(log_path, os.W_OK)) or (
            not log_path.exists() and os.access(parent, os.W_OK)
        ):
            handler = logging.FileHandler(log_path, encoding="utf-8")

    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)

    if console and isinstance(handler, logging.FileHandler):
        echo = logging.StreamHandler(sys.stderr)
        echo.setFormatter(logging.Formatter("%(message)s"))
        echo.setLevel(level)
        root_logger.addHandler(echo)
    return handler


def set_level(level: Union[int, str]) -> None:
    """Change the level of the root logger and its handlers at runtime."""
    if isinstance(level, str):
        level = parse_level(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for h in root_logger.handlers:
        h.setLevel(level)
