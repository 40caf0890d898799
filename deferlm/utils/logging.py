"""
Logging utilities for deferlm.

Provides structured logging with configurable levels, formats, and outputs.
"""

import functools
import logging
import sys
import time
from pathlib import Path
from typing import Optional, Union
from ..config.settings import get_default_config, LogLevel


class ColoredFormatter(logging.Formatter):
    """Colored console formatter for better readability."""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'        # Reset
    }

    def format(self, record):
        """Format log record with colors without mutating the shared record."""
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class DeferLMLogger:
    """Logger wrapper that configures itself from deferlm settings on first use."""

    def __init__(self, name: str, config=None):
        self.name = name
        self._config = config
        self.logger = logging.getLogger(name)
        self._configured = False

    @property
    def config(self):
        return self._config or get_default_config()

    def _ensure_configured(self):
        if not self._configured:
            self._configure()
            self._configured = True

    def _configure(self):
        """Configure the logger based on settings."""
        logging_config = self.config.logging
        self.logger.setLevel(getattr(logging, LogLevel(logging_config.level).value))

        self.logger.handlers.clear()

        if logging_config.console_logging:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(ColoredFormatter(logging_config.format_string))
            self.logger.addHandler(console_handler)

        if logging_config.file_logging and logging_config.log_file:
            log_file = Path(logging_config.log_file)
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(logging.Formatter(logging_config.format_string))
            self.logger.addHandler(file_handler)

        # Prevent propagation to avoid duplicate messages
        self.logger.propagate = False

    def isEnabledFor(self, level: int) -> bool:
        self._ensure_configured()
        return self.logger.isEnabledFor(level)

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self._ensure_configured()
        self.logger.debug(self._format_message(message, **kwargs))

    def info(self, message: str, **kwargs):
        """Log info message."""
        self._ensure_configured()
        self.logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self._ensure_configured()
        self.logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs):
        """Log error message."""
        self._ensure_configured()
        self.logger.error(self._format_message(message, **kwargs))

    def exception(self, message: str, **kwargs):
        """Log exception with traceback."""
        self._ensure_configured()
        self.logger.exception(self._format_message(message, **kwargs))

    def _format_message(self, message: str, **kwargs) -> str:
        """Format message with context."""
        if kwargs:
            context_str = " | ".join(f"{k}={v}" for k, v in kwargs.items())
            return f"{message} | {context_str}"
        return message


# Global logger registry
_loggers = {}


def get_logger(name: str = "deferlm") -> DeferLMLogger:
    """
    Get a logger instance.

    Args:
        name: Logger name (defaults to 'deferlm')

    Returns:
        Lazily configured logger instance
    """
    if name not in _loggers:
        _loggers[name] = DeferLMLogger(name)
    return _loggers[name]


def setup_logging(
    level: Optional[Union[str, LogLevel]] = None,
    console: Optional[bool] = None,
    file_path: Optional[Union[str, Path]] = None,
    format_string: Optional[str] = None
) -> None:
    """
    Setup global logging configuration.

    Args:
        level: Logging level
        console: Enable console logging
        file_path: Path for file logging
        format_string: Custom format string
    """
    config = get_default_config()

    if level is not None:
        config.logging.level = LogLevel(level.upper()) if isinstance(level, str) else level

    if console is not None:
        config.logging.console_logging = console

    if file_path is not None:
        config.logging.file_logging = True
        config.logging.log_file = Path(file_path)

    if format_string is not None:
        config.logging.format_string = format_string

    # Reconfigure all existing loggers
    for logger in _loggers.values():
        logger._configured = False


def log_performance(func):
    """Decorator to log function duration."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        start_time = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            duration = time.perf_counter() - start_time
            logger.error(f"{func.__name__} failed after {duration:.2f}s: {e}")
            raise
        logger.info(f"{func.__name__} completed", duration_seconds=round(time.perf_counter() - start_time, 4))
        return result

    return wrapper
