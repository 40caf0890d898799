"""Table loading and inspection for deferlm."""

from .tables import load_table, as_categorical, describe_table
from ..utils.validation import require_columns

__all__ = [
    "load_table",
    "as_categorical",
    "describe_table",
    "require_columns",
]
