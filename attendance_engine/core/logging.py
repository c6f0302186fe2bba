# attendance_engine/core/logging.py
"""Logging helpers."""

from __future__ import annotations

import logging

LOGGER_NAME = "attendance_engine"


def setup_logging(level: int | str = logging.INFO) -> logging.Logger:
    """
    Configure the package logger once.

    Every module logs through ``logging.getLogger(__name__)`` so records
    propagate to this logger. Calling this again only updates the level.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        fmt = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(fmt)
        logger.addHandler(handler)

    return logger
