"""Root logger configuration for the CLI entry points."""

from __future__ import annotations

import logging
import sys

LOG_LINE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

# Chatty client loggers kept at WARNING unless the root level is DEBUG.
_NOISY_LOGGERS = ("httpx", "httpcore", "alembic")


def configure_logging(level: str = "INFO") -> None:
    """Install one stream handler on the root logger."""

    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
    logging.basicConfig(level=resolved, handlers=[handler], force=True)
    if resolved > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
