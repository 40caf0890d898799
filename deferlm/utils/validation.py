"""
Validation utilities for deferlm.

Common argument checks shared by the fitting routine, the model builders and
the grouping driver.
"""

import numbers
from typing import Any, Iterable, List, Union

import numpy as np
import pandas as pd

from ..core.exceptions import ColumnNotFoundError, DataFormatError, ModelSpecificationError


def validate_degree(degree: Any, name: str = "degree") -> int:
    """
    Validate a polynomial degree.

    Args:
        degree: Candidate degree
        name: Name for error messages

    Returns:
        The degree as a plain ``int``

    Raises:
        ModelSpecificationError: If degree is not an integer >= 1
    """
    if isinstance(degree, (bool, np.bool_)) or not isinstance(degree, numbers.Integral):
        raise ModelSpecificationError(
            specific_issue=f"{name} must be an integer, got {type(degree).__name__} {degree!r}",
            suggestions=[
                "Use degree=1 for a straight line",
                "Use degree=2 for a quadratic",
            ],
        )

    degree = int(degree)
    if degree < 1:
        raise ModelSpecificationError(
            specific_issue=f"{name} must be >= 1, got {degree}",
            suggestions=[
                "Use degree=1 for a straight line",
                "An intercept-only model is 'y ~ 1'",
            ],
        )
    return degree


def validate_frame(data: Any, name: str = "data") -> pd.DataFrame:
    """
    Validate that ``data`` is a pandas DataFrame.

    Raises:
        DataFormatError: If data is not a DataFrame
    """
    if not isinstance(data, pd.DataFrame):
        raise DataFormatError(
            specific_issue=f"{name} must be a pandas DataFrame, got {type(data).__name__}",
            suggestions=[
                "Convert records with pandas.DataFrame(...)",
                "Load files with deferlm.load_table(path)",
            ],
        )
    return data


def require_columns(data: pd.DataFrame, columns: Union[str, Iterable[str]]) -> List[str]:
    """
    Check that every named column exists in ``data``.

    Returns:
        The column names as a list

    Raises:
        ColumnNotFoundError: If any column is absent
    """
    names = [columns] if isinstance(columns, str) else list(columns)
    missing = [c for c in names if c not in data.columns]
    if missing:
        raise ColumnNotFoundError(missing, available_columns=list(data.columns))
    return names


def validate_positive(value: float, name: str = "value", strict: bool = True) -> None:
    """Validate that a scalar is positive (or non-negative when ``strict=False``)."""
    if strict and not value > 0:
        raise ValueError(f"{name} must be > 0, got {value}")
    if not strict and not value >= 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
