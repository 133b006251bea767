"""
Logging configuration for the Provider Registry.

Every module logs through the shared ``logger``. Records go to stdout and,
unless LOG_TO_FILE is off, to ``<LOG_DIR>/<name>.log``. The log directory
and file are created when the first record is written, not at import.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from config.settings import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LazyFileHandler(logging.FileHandler):
    """FileHandler that opens its file, and makes its directory, on first emit."""

    def __init__(self, filename: Path):
        super().__init__(filename, encoding="utf-8", delay=True)

    def _open(self):
        Path(self.baseFilename).parent.mkdir(parents=True, exist_ok=True)
        return super()._open()


def setup_logging(
    name: str = "provider_registry",
    log_dir: Optional[Path] = None,
    to_file: Optional[bool] = None,
) -> logging.Logger:
    """
    Configure a named logger once.

    Args:
        name: Logger name, also the log file stem
        log_dir: Directory for the log file (default: settings.LOG_DIR)
        to_file: Write a log file at all (default: settings.LOG_TO_FILE)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper()))

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if settings.LOG_TO_FILE if to_file is None else to_file:
        file_handler = LazyFileHandler(Path(log_dir or settings.LOG_DIR) / f"{name}.log")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


# Default logger
logger = setup_logging()
