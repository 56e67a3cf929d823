"""Tests for logging module."""

import logging
import logging.handlers
from pathlib import Path

import pytest

from matrix_export.logger import get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level
    yield
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(level)


def test_setup_logging(test_settings):
    """Test logging setup creates handlers correctly."""
    setup_logging(test_settings)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG

    # Should have console and file handlers
    assert len(root_logger.handlers) == 2
    handlers = {type(h) for h in root_logger.handlers}
    assert logging.StreamHandler in handlers
    assert logging.handlers.RotatingFileHandler in handlers

    log_file = Path(test_settings.logging.file_path)
    assert log_file.exists()


def test_setup_logging_twice_does_not_duplicate_handlers(test_settings):
    setup_logging(test_settings)
    setup_logging(test_settings)
    assert len(logging.getLogger().handlers) == 2


def test_setup_logging_creates_log_directory(test_settings, temp_dir: Path):
    test_settings.logging.file_path = str(temp_dir / "nested" / "logs" / "export.log")
    setup_logging(test_settings)

    get_logger("test_directory").info("hello")
    assert (temp_dir / "nested" / "logs" / "export.log").exists()


def test_get_logger():
    """Test logger creation with correct name."""
    logger = get_logger("test_module")
    assert isinstance(logger, logging.Logger)
    assert logger.name == "test_module"


def test_logging_levels(test_settings):
    """Test different logging levels."""
    test_settings.logging.level = "DEBUG"
    setup_logging(test_settings)
    logger = get_logger("test_levels")

    assert logger.getEffectiveLevel() == logging.DEBUG

    test_settings.logging.level = "ERROR"
    setup_logging(test_settings)
    assert logger.getEffectiveLevel() == logging.ERROR


def test_nio_logger_is_quieted(test_settings):
    setup_logging(test_settings)
    assert logging.getLogger("nio").level == logging.WARNING
