import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import Settings


def setup_logging(settings: Settings) -> None:
    """Configure logging with both file and console handlers"""
    log_path = Path(settings.logging.file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    file_handler = RotatingFileHandler(
        settings.logging.file_path,
        maxBytes=settings.logging.max_size_mb * 1024 * 1024,
        backupCount=settings.logging.backup_count,
    )
    file_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.logging.level.upper()))

    # Replace handlers from a previous setup so repeated calls don't duplicate output
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # nio logs every sync response at INFO
    logging.getLogger("nio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name"""
    return logging.getLogger(name)
