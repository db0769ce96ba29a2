"""
Logger setup for Clarity modules.

One stream handler is attached to the root logger on first use. The level comes
from CLARITY_LOG_LEVEL and is re-read on every get_logger() call so tests and
the API entry point can change it through the environment. HTTP client loggers
are held at WARNING: their debug output includes request URLs, which carry the
notes database id, and headers, which carry tokens.
"""

from __future__ import annotations

import logging
import os
from typing import Final

LOG_LEVEL_ENV: Final[str] = "CLARITY_LOG_LEVEL"
DEFAULT_LEVEL: Final[str] = "INFO"
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"
_QUIET_LOGGERS: Final[tuple[str, ...]] = ("urllib3", "requests", "httpx")

_configured: bool = False


def log_level() -> int:
    """Numeric level from CLARITY_LOG_LEVEL; unknown names fall back to INFO."""
    name = os.getenv(LOG_LEVEL_ENV, DEFAULT_LEVEL).upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _configure_root(level: int) -> None:
    global _configured

    root = logging.getLogger()
    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
        root.addHandler(handler)
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
        _configured = True
    root.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Module logger under the shared Clarity handler."""
    level = log_level()
    _configure_root(level)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger
