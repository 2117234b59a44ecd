"""
logging_config.py - Shared logging setup for the catalog service.

Every module logs through a named logger:

    from logging_config import get_logger
    logger = get_logger(__name__)

Entry points (api.py, main.py) call setup_logging() once.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional


def level_from_env(default: int = logging.INFO) -> int:
    """Resolve LOG_LEVEL (name or number) into a logging level."""
    raw = str(os.getenv("LOG_LEVEL", "") or "").strip().upper()
    if not raw:
        return default
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else default


def setup_logging(level: Optional[int] = None, json_format: bool = False) -> None:
    """Configure the root logger with one stderr handler.

    Args:
        level: Logging level. Falls back to LOG_LEVEL, then INFO.
        json_format: If True, emit one JSON-like object per line.
    """
    root = logging.getLogger()
    root.setLevel(level if level is not None else level_from_env())
    root.handlers.clear()

    if json_format:
        formatter = logging.Formatter(
            '{"timestamp":"%(asctime)s","level":"%(levelname)s",'
            '"module":"%(name)s","message":"%(message)s"}',
            datefmt="%H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(name)-16s] %(levelname)-7s %(message)s",
            datefmt="%H:%M:%S",
        )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger."""
    return logging.getLogger(name)
