"""
Deferred polynomial model builder.

Takes a table, an unevaluated response, an unevaluated predictor and a
degree, fills the template ``response ~ poly(predictor, degree, raw = TRUE)``
and fits it against the table. Works directly or as the per-partition
callback of ``group_apply``.
"""

from typing import Any, Callable, Optional, Union

import pandas as pd

from ..config.settings import NAAction, get_default_config
from ..expressions.nodes import Expr, Formula
from ..expressions.template import poly_formula
from ..utils.logging import get_logger
from ..utils.validation import validate_degree
from .linear import lm


logger = get_logger(__name__)

ExprLike = Union[Expr, str]


class PolyModelBuilder:
    """
    Reusable polynomial model builder.

    The degree, raw flag and fitting options are bound once; each call
    captures the response and predictor, substitutes them into the
    polynomial template and fits against the given table.

    Examples:
        >>> quadratic = PolyModelBuilder(degree=2, na_action="fail")
        >>> print(quadratic.formula(col.dist, col.speed))
        dist ~ poly(speed, 2, raw = TRUE)
        >>> fit = quadratic(cars, col.dist, col.speed)
    """

    def __init__(
        self,
        degree: int = 1,
        raw: Optional[bool] = None,
        na_action: Optional[Union[str, NAAction]] = None,
        fitter: Optional[Callable[..., Any]] = None,
        **fit_options,
    ):
        self.degree = validate_degree(degree)
        self.raw = get_default_config().fitting.default_raw if raw is None else bool(raw)
        self.na_action = NAAction(na_action) if na_action is not None else None
        self.fitter = fitter or lm
        self.fit_options = fit_options
        self.logger = get_logger(self.__class__.__name__)

    def formula(self, response: ExprLike, predictor: ExprLike) -> Formula:
        """Capture both expressions and fill the template without fitting."""
        return poly_formula(response, predictor, degree=self.degree, raw=self.raw)

    def __call__(self, data: pd.DataFrame, response: ExprLike, predictor: ExprLike) -> Any:
        """
        Fit ``response ~ poly(predictor, degree, raw = ...)`` against ``data``.

        Returns:
            Whatever the fitting routine returns, unmodified
        """
        spec = self.formula(response, predictor)

        options = dict(self.fit_options)
        if self.na_action is not None:
            options["na_action"] = self.na_action

        self.logger.debug(f"Fitting {spec.to_string()}", n_rows=len(data))
        return self.fitter(spec, data, **options)

    def __repr__(self) -> str:
        na = self.na_action.value if self.na_action is not None else None
        return f"PolyModelBuilder(degree={self.degree}, raw={self.raw}, na_action={na!r})"


def lm_poly_raw(
    data: pd.DataFrame,
    response: ExprLike,
    predictor: ExprLike,
    degree: int = 1,
    *,
    raw: bool = True,
    na_action: Optional[Union[str, NAAction]] = None,
    fitter: Optional[Callable[..., Any]] = None,
    **fit_options,
) -> Any:
    """
    Fit a polynomial regression of ``response`` on ``predictor``.

    Equivalent to ``lm("response ~ poly(predictor, degree, raw = TRUE)", data)``
    with the response and predictor taken as unevaluated expressions.

    Args:
        data: Table the expressions are resolved against
        response: Deferred response, e.g. ``col.dist`` or ``"log(dist)"``
        predictor: Deferred predictor, e.g. ``col.speed``
        degree: Polynomial degree (>= 1)
        raw: Raw powers (default) or orthogonal polynomials
        na_action: Missing-value policy forwarded unchanged to the fitter;
            the fitter's configured default applies when None
        fitter: Fitting routine, ``lm`` by default
        **fit_options: Further options forwarded to the fitter

    Returns:
        The fit result, unmodified

    Raises:
        ExpressionError: If response or predictor is an evaluated value
        ModelSpecificationError: If degree is not an integer >= 1
        MissingDataError: If ``na_action="fail"`` and values are missing

    Examples:
        >>> fit = lm_poly_raw(cars, col.dist, col.speed, degree=2)
        >>> group_apply(cars, "group", lm_poly_raw, col.dist, col.speed, 2, na_action="fail")
    """
    builder = PolyModelBuilder(degree, raw=raw, na_action=na_action, fitter=fitter, **fit_options)
    return builder(data, response, predictor)
