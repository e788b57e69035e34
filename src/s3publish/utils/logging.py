"""
Logging Utilities

Configures the ``s3publish`` logger hierarchy once, from the environment or
explicitly through setup_logging().

Log Format:
    %(asctime)s - %(name)s - %(levelname)s - %(message)s

Environment:
    S3PUBLISH_LOG_LEVEL: DEBUG, INFO, WARNING or ERROR (default INFO)
    S3PUBLISH_LOG_FILE: Optional file receiving a copy of the output
    S3PUBLISH_DEBUG: true/1/yes forces DEBUG
"""

import logging
import os
import sys
from typing import Optional

ROOT_LOGGER_NAME = "s3publish"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LOG_LEVEL = os.getenv("S3PUBLISH_LOG_LEVEL", "INFO").upper()
_LOG_FILE = os.getenv("S3PUBLISH_LOG_FILE", None)
_DEBUG_MODE = os.getenv("S3PUBLISH_DEBUG", "").lower() in ("true", "1", "yes")

_root_configured = False
_root_logger: Optional[logging.Logger] = None


def _effective_level() -> int:
    if _DEBUG_MODE:
        return logging.DEBUG
    return getattr(logging, _LOG_LEVEL, logging.INFO)


def _configure_root_logger() -> None:
    """
    Configure the root s3publish logger.

    Installs a stdout handler and, when configured, a file handler.
    Handlers from a previous configuration are removed first.
    """
    global _root_configured, _root_logger

    if _root_configured:
        return

    _root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(_root_logger.handlers):
        _root_logger.removeHandler(handler)
        handler.close()

    level = _effective_level()
    _root_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    _root_logger.addHandler(console_handler)

    if _LOG_FILE:
        try:
            os.makedirs(os.path.dirname(_LOG_FILE) or ".", exist_ok=True)
            file_handler = logging.FileHandler(_LOG_FILE)
            file_handler.setFormatter(formatter)
            file_handler.setLevel(level)
            _root_logger.addHandler(file_handler)
        except OSError as e:
            _root_logger.warning(f"Failed to create log file {_LOG_FILE}: {e}")

    _root_configured = True


def get_logger(name: str = ROOT_LOGGER_NAME, level: Optional[str] = None) -> logging.Logger:
    """
    Get a logger below the configured s3publish hierarchy.

    Args:
        name: Logger name (e.g. 's3publish.publisher')
        level: Optional level override (DEBUG, INFO, WARNING, ERROR)

    Returns:
        logging.Logger instance
    """
    _configure_root_logger()

    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    debug: bool = False,
) -> logging.Logger:
    """
    Setup logging for command line use. Replaces any earlier configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for log output
        debug: Force DEBUG regardless of ``level``

    Returns:
        Configured root s3publish logger
    """
    global _root_configured, _LOG_LEVEL, _LOG_FILE, _DEBUG_MODE

    _root_configured = False
    _LOG_LEVEL = level.upper()
    _LOG_FILE = log_file
    _DEBUG_MODE = debug

    _configure_root_logger()
    return _root_logger
