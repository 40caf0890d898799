"""
Capturing deferred expressions.

Turns what a caller passes for a model variable into an expression tree
without evaluating it. Already-evaluated data (Series, arrays, numbers) is
rejected at capture time because the column it came from can no longer be
resolved against a different table.
"""

from typing import Any

import numpy as np
import pandas as pd

from ..core.exceptions import ExpressionError
from .nodes import Expr, Formula, Symbol


class ColumnNamespace:
    """
    Attribute-style access to deferred column references.

    Examples:
        col.speed                 -> Symbol("speed")
        col["body mass"]          -> Symbol("body mass")
        col.dist / col.speed      -> BinaryOp("/", Symbol("dist"), Symbol("speed"))
    """

    def __getattr__(self, name: str) -> Symbol:
        if name.startswith("__") and name.endswith("__"):
            raise AttributeError(name)
        return Symbol(name)

    def __getitem__(self, name: str) -> Symbol:
        return Symbol(name)

    def __repr__(self) -> str:
        return "col"


col = ColumnNamespace()


def quote(source: str) -> Expr:
    """
    Parse expression source text into a tree without evaluating it.

    Examples:
        quote("speed")            -> Symbol("speed")
        quote("log(dist)")        -> Call("log", (Symbol("dist"),))
        quote("x^2 + 1")          -> BinaryOp("+", BinaryOp("^", ...), Literal(1))
    """
    from .parser import parse_expression

    return parse_expression(source)


def is_deferred(value: Any) -> bool:
    """Whether ``value`` can be captured as a model variable."""
    return isinstance(value, str) or (isinstance(value, Expr) and not isinstance(value, Formula))


def capture(value: Any, argument: str = "expression") -> Expr:
    """
    Capture a caller-supplied model variable as an expression tree.

    Args:
        value: An ``Expr`` (e.g. ``col.speed``) or expression source text
        argument: Name of the argument, used in error messages

    Returns:
        The captured expression

    Raises:
        ExpressionError: If ``value`` is an evaluated value or a formula
    """
    if isinstance(value, Formula):
        raise ExpressionError(
            expression=value.to_string(),
            argument=argument,
            reason="expected a single variable expression, got a whole formula",
            suggestions=["Pass the response and predictor separately"],
        )

    if isinstance(value, Expr):
        return value

    if isinstance(value, str):
        if not value.strip():
            raise ExpressionError(
                expression=value,
                argument=argument,
                reason="expression source is empty",
            )
        return quote(value)

    if isinstance(value, (pd.Series, pd.DataFrame, np.ndarray, list, tuple)):
        kind = "column values" if isinstance(value, pd.Series) else "array data"
        reason = f"got already evaluated {kind} ({type(value).__name__}) instead of a deferred reference"
    elif value is None:
        reason = "got None instead of a deferred reference"
    else:
        reason = f"got an evaluated {type(value).__name__} value {value!r} instead of a deferred reference"

    raise ExpressionError(
        expression=type(value).__name__,
        argument=argument,
        reason=reason,
    )
