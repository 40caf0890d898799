"""Core functionality for deferlm."""

from .exceptions import (
    DeferLMError,
    ExpressionError,
    ModelSpecificationError,
    DataFormatError,
    ColumnNotFoundError,
    MissingDataError,
    FitError,
    ConfigurationError,
)

__all__ = [
    "DeferLMError",
    "ExpressionError",
    "ModelSpecificationError",
    "DataFormatError",
    "ColumnNotFoundError",
    "MissingDataError",
    "FitError",
    "ConfigurationError",
]
