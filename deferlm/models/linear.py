"""
Linear model fitting for deferlm.

``lm()`` resolves a formula against a table and solves (weighted) least
squares. Linearly dependent columns are detected the way R's ``lm`` does:
a column whose residual after projecting out the earlier kept columns is
negligible relative to its own norm is aliased and gets a NaN coefficient.
"""

from typing import Any, Dict, Optional, Union

import numpy as np
import pandas as pd
from scipy import linalg

from ..config.settings import DeferLMConfig, NAAction, get_default_config
from ..core.exceptions import FitError, ModelSpecificationError
from ..expressions.capture import capture
from ..expressions.design_matrix import DesignMatrixBuilder, DesignMatrixInfo
from ..expressions.nodes import Expr, Formula
from ..expressions.parser import parse_formula
from ..utils.logging import get_logger
from ..utils.validation import validate_positive
from .base import LinearModelResult


logger = get_logger(__name__)


class LinearModel:
    """
    Ordinary and weighted least-squares fitting.

    Configuration (default missing-value policy, rank tolerance) is read
    from ``DeferLMConfig`` unless overridden per call.
    """

    def __init__(self, config: Optional[DeferLMConfig] = None):
        self._config = config
        self.logger = get_logger(self.__class__.__name__)
        self.builder = DesignMatrixBuilder()

    @property
    def config(self) -> DeferLMConfig:
        return self._config or get_default_config()

    def fit(
        self,
        formula: Union[str, Formula],
        data: pd.DataFrame,
        na_action: Optional[Union[str, NAAction]] = None,
        weights: Optional[Union[str, Expr]] = None,
        rank_tolerance: Optional[float] = None,
    ) -> LinearModelResult:
        """
        Fit a linear model.

        Args:
            formula: Formula object or source such as ``"dist ~ poly(speed, 2)"``
            data: Table the formula is resolved against
            na_action: Missing-value policy; the configured default when None
            weights: Optional expression for observation weights
            rank_tolerance: Tolerance for detecting aliased columns

        Returns:
            LinearModelResult

        Raises:
            ModelSpecificationError: If the formula has no response
            ColumnNotFoundError: If a referenced column is absent
            MissingDataError: If ``na_action`` is FAIL and values are missing
            FitError: If the least-squares problem cannot be solved
        """
        formula = parse_formula(formula)
        if not formula.has_response:
            raise ModelSpecificationError(
                formula=formula.to_string(),
                specific_issue="linear models need a response on the left of '~'",
                suggestions=["Write the formula as 'response ~ predictors'"],
            )

        na_action = NAAction(na_action) if na_action is not None else self.config.fitting.default_na_action
        tolerance = rank_tolerance if rank_tolerance is not None else self.config.fitting.rank_tolerance
        weights_expr = capture(weights, "weights") if weights is not None else None

        info = self.builder.build(formula, data, na_action=na_action, weights=weights_expr)
        self.logger.debug(
            f"Fitting {formula.to_string()}",
            n_obs=info.n_obs,
            n_coef=info.parameter_count,
            na_action=na_action.value,
        )

        solution = self._solve(info, tolerance)
        residuals, fitted = self._label_observations(info, solution, data.index, na_action)

        result = LinearModelResult(
            formula=formula,
            column_names=list(info.column_names),
            coefficients=solution["coefficients"],
            std_errors=solution["std_errors"],
            cov_unscaled=solution["cov_unscaled"],
            residuals=residuals,
            fitted_values=fitted,
            n_obs=info.n_obs,
            rank=solution["rank"],
            df_residual=solution["df_residual"],
            sigma=solution["sigma"],
            r_squared=solution["r_squared"],
            adj_r_squared=solution["adj_r_squared"],
            f_statistic=solution["f_statistic"],
            f_df=solution["f_df"],
            log_likelihood=solution["log_likelihood"],
            na_action=na_action,
            na_index=info.dropped_index,
            design=info,
            weighted=info.weights is not None,
            warnings=solution["warnings"],
            metadata={"n_total_rows": info.n_total_rows},
        )

        for message in result.warnings:
            self.logger.warning(message, formula=formula.to_string())

        return result

    def _solve(self, info: DesignMatrixInfo, tolerance: float) -> Dict[str, Any]:
        """Solve the least-squares problem described by ``info``."""
        X = info.matrix
        y = info.response
        n, p = X.shape
        formula = info.formula_string

        if n == 0:
            raise FitError(reason="0 (non-NA) cases", formula=formula, n_obs=0, n_coef=p)
        if n < p:
            raise FitError(
                reason=f"{n} usable rows for {p} coefficients",
                formula=formula,
                n_obs=n,
                n_coef=p,
            )
        if not np.all(np.isfinite(X)) or not np.all(np.isfinite(y)):
            raise FitError(reason="NA/NaN/Inf in design matrix or response", formula=formula, n_obs=n, n_coef=p)

        if info.weights is not None:
            w = info.weights
            if not np.all(np.isfinite(w)):
                raise FitError(reason="non-finite weights", formula=formula, n_obs=n, n_coef=p)
            try:
                validate_positive(float(w.min()), "weights")
            except ValueError as e:
                raise FitError(reason=str(e), formula=formula, n_obs=n, n_coef=p) from e
        else:
            w = np.ones(n)

        sw = np.sqrt(w)
        Xw = X * sw[:, None]
        yw = y * sw

        keep = self._independent_columns(Xw, tolerance)
        q, r = linalg.qr(Xw[:, keep], mode="economic")
        beta_kept = linalg.solve_triangular(r, q.T @ yw)
        r_inv = linalg.solve_triangular(r, np.eye(len(keep)))

        coefficients = np.full(p, np.nan)
        coefficients[keep] = beta_kept
        fitted = X[:, keep] @ beta_kept
        residuals = y - fitted

        rank = len(keep)
        df_residual = n - rank
        rss = float(np.sum(w * residuals ** 2))
        sigma = float(np.sqrt(rss / df_residual)) if df_residual > 0 else np.nan

        cov_unscaled = np.full((p, p), np.nan)
        cov_unscaled[np.ix_(keep, keep)] = r_inv @ r_inv.T
        std_errors = np.full(p, np.nan)
        std_errors[keep] = sigma * np.sqrt(np.diag(cov_unscaled)[keep])

        warnings = []
        if rank < p:
            aliased = [info.column_names[j] for j in range(p) if j not in keep]
            warnings.append(f"{p - rank} coefficient(s) not defined because of singularities: {aliased}")

        solution = {
            "coefficients": coefficients,
            "std_errors": std_errors,
            "cov_unscaled": cov_unscaled,
            "fitted": fitted,
            "residuals": residuals,
            "rank": rank,
            "df_residual": df_residual,
            "sigma": sigma,
            "warnings": warnings,
        }
        solution.update(self._fit_statistics(y, w, rss, rank, df_residual, info.has_intercept))
        return solution

    def _independent_columns(self, X: np.ndarray, tolerance: float) -> list:
        """Indices of columns that are not linear combinations of earlier kept columns."""
        keep = []
        for j in range(X.shape[1]):
            column = X[:, j]
            norm = np.linalg.norm(column)
            if norm == 0:
                continue
            if keep:
                coef, *_ = np.linalg.lstsq(X[:, keep], column, rcond=None)
                residual = np.linalg.norm(column - X[:, keep] @ coef)
            else:
                residual = norm
            if residual > tolerance * norm:
                keep.append(j)
        return keep

    def _fit_statistics(
        self,
        y: np.ndarray,
        w: np.ndarray,
        rss: float,
        rank: int,
        df_residual: int,
        has_intercept: bool,
    ) -> Dict[str, Any]:
        """R-squared, F statistic and log-likelihood."""
        n = len(y)
        if has_intercept:
            centre = np.sum(w * y) / np.sum(w)
            tss = float(np.sum(w * (y - centre) ** 2))
        else:
            tss = float(np.sum(w * y ** 2))

        df_model = rank - int(has_intercept)
        r_squared = adj_r_squared = f_statistic = f_df = None

        if tss > 0:
            r_squared = 1.0 - rss / tss
            if df_residual > 0:
                adj_r_squared = 1.0 - (1.0 - r_squared) * (n - int(has_intercept)) / df_residual
            else:
                # Exact fit, as in R
                adj_r_squared = np.nan
            if df_model > 0 and df_residual > 0 and rss > 0:
                f_statistic = ((tss - rss) / df_model) / (rss / df_residual)
                f_df = (df_model, df_residual)

        with np.errstate(divide="ignore"):
            log_likelihood = 0.5 * (
                np.sum(np.log(w)) - n * (np.log(2 * np.pi) + 1 - np.log(n) + np.log(rss))
            )

        return {
            "r_squared": r_squared,
            "adj_r_squared": adj_r_squared,
            "f_statistic": f_statistic,
            "f_df": f_df,
            "log_likelihood": float(log_likelihood),
        }

    def _label_observations(
        self,
        info: DesignMatrixInfo,
        solution: Dict[str, Any],
        full_index: pd.Index,
        na_action: NAAction,
    ):
        """Residuals and fitted values as Series, padded with NaN under EXCLUDE."""
        residuals = pd.Series(solution["residuals"], index=info.row_index, name="residuals")
        fitted = pd.Series(solution["fitted"], index=info.row_index, name="fitted")

        if na_action == NAAction.EXCLUDE and len(info.dropped_index):
            residuals = residuals.reindex(full_index)
            fitted = fitted.reindex(full_index)

        return residuals, fitted


def lm(
    formula: Union[str, Formula],
    data: pd.DataFrame,
    na_action: Optional[Union[str, NAAction]] = None,
    weights: Optional[Union[str, Expr]] = None,
    **options,
) -> LinearModelResult:
    """
    Fit a linear model by least squares.

    Args:
        formula: Formula object or source text
        data: Table the formula is resolved against
        na_action: ``"omit"``, ``"exclude"`` or ``"fail"``; the configured
            default (``"omit"``) when None
        weights: Optional expression for observation weights
        **options: Further fitting options (``rank_tolerance``)

    Returns:
        LinearModelResult

    Examples:
        >>> fit = lm("dist ~ speed", cars)
        >>> fit = lm("dist ~ poly(speed, 2, raw = TRUE)", cars, na_action="fail")
    """
    return LinearModel().fit(formula, data, na_action=na_action, weights=weights, **options)
