"""
Functions that expressions may call.

Only names registered here can appear in a ``Call`` node; nothing is ever
passed to ``eval``. Polynomial bases follow R's ``poly()``: raw powers, or an
orthogonal basis described by recurrence coefficients so that the same basis
can be rebuilt on new data.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np
import pandas as pd

from ..core.exceptions import ExpressionError, ModelSpecificationError


@dataclass(frozen=True)
class PolyCoefs:
    """Recurrence coefficients of an orthogonal polynomial basis."""

    alpha: Tuple[float, ...]
    norm2: Tuple[float, ...]


def _values(x: Any, name: str) -> np.ndarray:
    """Numeric values of a column-like argument."""
    if isinstance(x, pd.Series):
        if isinstance(x.dtype, pd.CategoricalDtype) or pd.api.types.is_string_dtype(x.dtype):
            raise ExpressionError(
                expression=x.name,
                reason=f"{name}() needs a numeric argument, got {x.dtype}",
                suggestions=["Convert the column to a numeric dtype first"],
            )
        return x.to_numpy(dtype=float)
    return np.asarray(x, dtype=float)


def _rewrap(result: np.ndarray, like: Any) -> Any:
    """Keep Series inputs as Series so row labels survive."""
    if isinstance(like, pd.Series):
        return pd.Series(result, index=like.index)
    return result


def _unary(numpy_function: Callable, name: str) -> Callable:
    def apply(x):
        with np.errstate(divide="ignore", invalid="ignore"):
            return _rewrap(numpy_function(_values(x, name)), x)

    apply.__name__ = name
    return apply


def _log(x, base: Optional[float] = None):
    with np.errstate(divide="ignore", invalid="ignore"):
        result = np.log(_values(x, "log"))
        if base is not None:
            result = result / np.log(base)
    return _rewrap(result, x)


def _identity(x):
    """R's I(): protect arithmetic inside a formula."""
    return x


def _scale(x, center: bool = True, scale: bool = True):
    """R's scale(): center on the mean and divide by the sample standard deviation."""
    values = _values(x, "scale")
    if center:
        values = values - np.nanmean(values)
    if scale:
        values = values / np.nanstd(values, ddof=1)
    return _rewrap(values, x)


def poly_coefs(x: np.ndarray, degree: int) -> PolyCoefs:
    """
    Compute recurrence coefficients of the orthogonal basis for ``x``.

    Args:
        x: Finite numeric values
        degree: Polynomial degree

    Returns:
        PolyCoefs usable with ``poly_basis`` on any data
    """
    x = np.asarray(x, dtype=float)
    if degree >= len(np.unique(x)):
        raise ModelSpecificationError(
            specific_issue=f"'degree' must be less than number of unique points ({len(np.unique(x))})",
            suggestions=[
                "Lower the polynomial degree",
                "Use raw = TRUE to allow an aliased fit",
            ],
        )

    xbar = float(np.mean(x))
    centered = x - xbar
    vandermonde = np.vander(centered, degree + 1, increasing=True)
    q, r = np.linalg.qr(vandermonde)
    raw = q * np.diag(r)
    norm2 = np.sum(raw ** 2, axis=0)
    alpha = (np.sum(centered[:, None] * raw ** 2, axis=0) / norm2 + xbar)[:degree]

    return PolyCoefs(
        alpha=tuple(float(a) for a in alpha),
        norm2=(1.0,) + tuple(float(n) for n in norm2),
    )


def poly_basis(x: np.ndarray, degree: int, coefs: PolyCoefs) -> np.ndarray:
    """Evaluate the orthogonal basis described by ``coefs`` at ``x``."""
    x = np.asarray(x, dtype=float)
    alpha = coefs.alpha
    norm2 = coefs.norm2

    z = np.ones((len(x), degree + 1))
    z[:, 1] = x - alpha[0]
    for i in range(1, degree):
        z[:, i + 1] = (x - alpha[i]) * z[:, i] - (norm2[i + 1] / norm2[i]) * z[:, i - 1]

    z = z / np.sqrt(np.asarray(norm2[1:]))
    return z[:, 1:]


def raw_basis(x: np.ndarray, degree: int) -> np.ndarray:
    """Raw powers ``x, x^2, ..., x^degree`` as columns."""
    x = np.asarray(x, dtype=float)
    return np.column_stack([x ** power for power in range(1, degree + 1)])


def poly(x, degree: int = 1, raw: bool = False, coefs: Optional[PolyCoefs] = None) -> np.ndarray:
    """
    Polynomial basis matrix with one column per power.

    Args:
        x: Column values
        degree: Polynomial degree (>= 1)
        raw: Raw powers when True, orthogonal basis otherwise
        coefs: Stored coefficients for rebuilding an orthogonal basis

    Returns:
        Array of shape (n, degree)
    """
    from ..utils.validation import validate_degree

    degree = validate_degree(degree)
    values = _values(x, "poly")
    if np.isnan(values).any():
        raise ExpressionError(
            expression="poly",
            reason="missing values are not allowed in poly()",
            suggestions=["Let the fitting routine drop incomplete rows first"],
        )

    if raw:
        return raw_basis(values, degree)
    if coefs is None:
        coefs = poly_coefs(values, degree)
    return poly_basis(values, degree, coefs)


_FUNCTIONS: Dict[str, Callable] = {
    "I": _identity,
    "log": _log,
    "log10": _unary(np.log10, "log10"),
    "log2": _unary(np.log2, "log2"),
    "log1p": _unary(np.log1p, "log1p"),
    "exp": _unary(np.exp, "exp"),
    "sqrt": _unary(np.sqrt, "sqrt"),
    "abs": _unary(np.abs, "abs"),
    "sin": _unary(np.sin, "sin"),
    "cos": _unary(np.cos, "cos"),
    "scale": _scale,
    "poly": poly,
}


def get_function(name: str) -> Callable:
    """Look up a whitelisted function by name."""
    try:
        return _FUNCTIONS[name]
    except KeyError:
        raise ExpressionError(
            expression=name,
            reason=f"unknown function '{name}'",
            suggestions=[f"Available functions: {', '.join(sorted(_FUNCTIONS))}"],
        ) from None


def register_function(name: str, function: Callable) -> None:
    """Make ``function`` callable from expressions under ``name``."""
    if not name.isidentifier():
        raise ExpressionError(expression=name, reason="function names must be identifiers")
    _FUNCTIONS[name] = function


def list_functions() -> Tuple[str, ...]:
    """Names of all callable functions."""
    return tuple(sorted(_FUNCTIONS))
