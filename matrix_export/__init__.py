"""Matrix chat export - keep a durable, edit-aware copy of chat history in one or more sinks."""

from importlib import metadata

__version__ = "0.1.0"
__license__ = "MIT"

try:
    __version__ = metadata.version(__package__ or __name__)
except metadata.PackageNotFoundError:
    # Package is not installed
    pass

from .config import Settings, MatrixConfig, WatcherConfig, LogConfig
from .logger import setup_logging, get_logger
from .dumper import Dumper
from .exporter import ChatExporter
from .retention import RetentionBuffer

__all__ = [
    "Settings",
    "MatrixConfig",
    "WatcherConfig",
    "LogConfig",
    "setup_logging",
    "get_logger",
    "Dumper",
    "ChatExporter",
    "RetentionBuffer",
]
