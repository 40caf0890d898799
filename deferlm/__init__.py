"""
deferlm: deferred model formulas for linear models over tables

Capture response and predictor expressions without evaluating them, splice
them into formula templates such as ``response ~ poly(predictor, degree,
raw = TRUE)``, and fit the result against a table, directly or once per
partition of a grouped table.
"""

__version__ = "0.3.0"

# Expressions
from .expressions import (
    col,
    quote,
    capture,
    formula,
    parse_formula,
    parse_expression,
    Formula,
    FormulaTemplate,
    poly_formula,
    register_function,
)

# Models
from .models import LinearModel, LinearModelResult, lm, lm_poly_raw, PolyModelBuilder

# Grouped execution
from .grouping import group_apply, unnest_results, fit_poly_by_group

# Tables
from .data import load_table, as_categorical, describe_table, require_columns

# Configuration
from .config.settings import DeferLMConfig, NAAction, ErrorPolicy, get_default_config

# Logging
from .utils.logging import get_logger, setup_logging

# Import key exception classes
from .core.exceptions import (
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
    # Version info
    "__version__",

    # Expressions
    "col",
    "quote",
    "capture",
    "formula",
    "parse_formula",
    "parse_expression",
    "Formula",
    "FormulaTemplate",
    "poly_formula",
    "register_function",

    # Models
    "LinearModel",
    "LinearModelResult",
    "lm",
    "lm_poly_raw",
    "PolyModelBuilder",

    # Grouped execution
    "group_apply",
    "unnest_results",
    "fit_poly_by_group",

    # Tables
    "load_table",
    "as_categorical",
    "describe_table",
    "require_columns",

    # Configuration
    "DeferLMConfig",
    "NAAction",
    "ErrorPolicy",
    "get_config",
    "configure",

    # Logging
    "get_logger",
    "setup_logging",

    # Exceptions
    "DeferLMError",
    "ExpressionError",
    "ModelSpecificationError",
    "DataFormatError",
    "ColumnNotFoundError",
    "MissingDataError",
    "FitError",
    "ConfigurationError",
]


def get_config() -> DeferLMConfig:
    """Get the global configuration instance."""
    return get_default_config()


def configure(**kwargs) -> None:
    """
    Update global configuration.

    Examples:
        >>> configure(fitting={"default_na_action": "fail"})
        >>> configure(**{"grouping.parallel": True})
    """
    get_config().update(**kwargs)
