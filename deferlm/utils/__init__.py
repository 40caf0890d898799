"""Utility functions and classes for deferlm."""

from .logging import get_logger, setup_logging, log_performance
from .validation import validate_degree, validate_frame, require_columns, validate_positive

__all__ = [
    "get_logger",
    "setup_logging",
    "log_performance",
    "validate_degree",
    "validate_frame",
    "require_columns",
    "validate_positive",
]
