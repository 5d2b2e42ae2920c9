"""
Logging configuration for hh-relay.
Console output with colors plus rotating log files.
"""

import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Log directory
LOG_DIR = Path(os.getenv("LOG_DIR", Path(__file__).parent.parent / "logs"))

# Log level from environment
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Loggers of the relay's own packages; they propagate into the app logger's handlers.
PACKAGE_LOGGERS = ("core", "browser", "api")


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        original = record.levelname
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def setup_logging(name: str = "hh_relay", log_dir: Path = None) -> logging.Logger:
    """
    Setup and return a configured logger.

    Handlers are attached to the named logger and to the package loggers
    (core, browser, api) so library modules using ``logging.getLogger(__name__)``
    end up in the same console and files.

    Args:
        name: Logger name (default: hh_relay)
        log_dir: Directory for log files (default: LOG_DIR)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    level = getattr(logging, LOG_LEVEL, logging.INFO)
    log_dir = Path(log_dir or LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Console handler with colors
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(ColoredFormatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    file_format = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # File handler with rotation
    file_handler = RotatingFileHandler(
        log_dir / f"{name}.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_format)

    # Error file handler (errors and above)
    error_handler = RotatingFileHandler(
        log_dir / f"{name}_errors.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=5
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_format)

    for target in (logger, *(logging.getLogger(pkg) for pkg in PACKAGE_LOGGERS)):
        target.setLevel(level)
        target.propagate = False
        for handler in (console_handler, file_handler, error_handler):
            target.addHandler(handler)

    return logger


def log_request(method: str, path: str, status_code: int = None, duration_ms: float = None):
    """Log an HTTP request."""
    logger = logging.getLogger("api.http")
    if duration_ms is not None:
        logger.info(f"HTTP {method} {path} -> {status_code} ({duration_ms:.2f}ms)")
    else:
        logger.info(f"HTTP {method} {path}")
