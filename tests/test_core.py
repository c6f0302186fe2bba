# tests/test_core.py
import logging

from attendance_engine.core.config import Settings
from attendance_engine.core.logging import LOGGER_NAME, setup_logging


def test_settings_read_cliff_constants_from_env(monkeypatch):
    monkeypatch.setenv("CLIFF_WINDOW_MINUTES", "8")
    monkeypatch.setenv("BULK_RECALC_CONCURRENCY", "5")

    settings = Settings()

    assert settings.CLIFF_WINDOW_MINUTES == 8.0
    assert settings.CLIFF_STAYER_THRESHOLD_MINUTES == 2.0
    assert settings.BULK_RECALC_CONCURRENCY == 5


def test_setup_logging_adds_a_single_handler():
    logger = setup_logging("debug")
    handlers = len(logger.handlers)

    again = setup_logging(logging.WARNING)

    assert again is logger
    assert logger.name == LOGGER_NAME
    assert len(logger.handlers) == handlers
    assert logger.level == logging.WARNING
