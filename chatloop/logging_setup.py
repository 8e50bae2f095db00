"""Logging configuration."""

from __future__ import annotations

import logging
import sys

from chatloop.config import LoggingConfig


def configure_logging(config: LoggingConfig | None = None, *, level: str | None = None) -> None:
    """Configure the root logger from *config*, with *level* taking precedence."""
    config = config or LoggingConfig()
    logging.basicConfig(
        level=getattr(logging, (level or config.level).upper(), logging.WARNING),
        format=config.format,
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
