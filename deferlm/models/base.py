"""
Result container for linear model fits in deferlm.

Holds named coefficients, inference statistics and the design information
needed to predict on new data.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from scipy import stats

from ..config.settings import NAAction
from ..expressions.design_matrix import DesignMatrixBuilder, DesignMatrixInfo
from ..expressions.nodes import Formula
from ..utils.logging import get_logger
from ..utils.validation import validate_positive


logger = get_logger(__name__)


@dataclass(repr=False)
class LinearModelResult:
    """Result of an ordinary or weighted least-squares fit."""

    # Model identification
    formula: Formula
    column_names: List[str]

    # Estimates (NaN for aliased columns)
    coefficients: np.ndarray
    std_errors: np.ndarray
    cov_unscaled: np.ndarray

    # Per-observation values, labelled by row
    residuals: pd.Series
    fitted_values: pd.Series

    # Fit statistics
    n_obs: int
    rank: int
    df_residual: int
    sigma: float
    r_squared: Optional[float] = None
    adj_r_squared: Optional[float] = None
    f_statistic: Optional[float] = None
    f_df: Optional[tuple] = None
    log_likelihood: Optional[float] = None
    aic: Optional[float] = None
    bic: Optional[float] = None

    # Missing-value handling
    na_action: NAAction = NAAction.OMIT
    na_index: Optional[pd.Index] = None

    # Design information for predict()
    design: Optional[DesignMatrixInfo] = None
    weighted: bool = False

    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Calculate derived quantities after initialization."""
        with np.errstate(divide="ignore", invalid="ignore"):
            self.t_values = self.coefficients / self.std_errors

        if self.df_residual > 0:
            self.p_values = 2 * stats.t.sf(np.abs(self.t_values), self.df_residual)
        else:
            self.p_values = np.full(len(self.coefficients), np.nan)

        if self.log_likelihood is not None:
            # The residual variance counts as a parameter
            k = self.rank + 1
            if self.aic is None:
                self.aic = -2 * self.log_likelihood + 2 * k
            if self.bic is None:
                self.bic = -2 * self.log_likelihood + np.log(self.n_obs) * k

    @property
    def formula_string(self) -> str:
        return self.formula.to_string()

    @property
    def params(self) -> pd.Series:
        """Coefficients as a Series indexed by column name."""
        return pd.Series(self.coefficients, index=self.column_names, name="estimate")

    @property
    def aliased(self) -> List[str]:
        """Columns dropped from the fit as linearly dependent."""
        return [name for name, value in zip(self.column_names, self.coefficients) if np.isnan(value)]

    @property
    def n_dropped(self) -> int:
        return 0 if self.na_index is None else len(self.na_index)

    @property
    def f_p_value(self) -> Optional[float]:
        if self.f_statistic is None or self.f_df is None:
            return None
        return float(stats.f.sf(self.f_statistic, *self.f_df))

    def get_parameter_dict(self) -> Dict[str, float]:
        """Get coefficients as a dictionary with names."""
        return {name: float(value) for name, value in zip(self.column_names, self.coefficients)}

    def tidy(self) -> pd.DataFrame:
        """One row per coefficient: term, estimate, std_error, statistic, p_value."""
        return pd.DataFrame({
            "term": self.column_names,
            "estimate": self.coefficients,
            "std_error": self.std_errors,
            "statistic": self.t_values,
            "p_value": self.p_values,
        })

    def glance(self) -> pd.DataFrame:
        """One-row summary of the whole fit."""
        return pd.DataFrame([{
            "r_squared": self.r_squared,
            "adj_r_squared": self.adj_r_squared,
            "sigma": self.sigma,
            "statistic": self.f_statistic,
            "p_value": self.f_p_value,
            "df": None if self.f_df is None else self.f_df[0],
            "log_lik": self.log_likelihood,
            "aic": self.aic,
            "bic": self.bic,
            "df_residual": self.df_residual,
            "nobs": self.n_obs,
        }])

    def confint(self, level: float = 0.95) -> pd.DataFrame:
        """
        Confidence intervals for the coefficients.

        Args:
            level: Confidence level in (0, 1)

        Returns:
            DataFrame indexed by term with lower/upper columns named like R
            (``"2.5 %"``, ``"97.5 %"``)
        """
        validate_positive(level, "level")
        if level >= 1:
            raise ValueError(f"level must be < 1, got {level}")

        alpha = (1 - level) / 2
        quantile = stats.t.ppf(1 - alpha, self.df_residual) if self.df_residual > 0 else np.nan
        half_width = quantile * self.std_errors

        return pd.DataFrame(
            {
                f"{100 * alpha:g} %": self.coefficients - half_width,
                f"{100 * (1 - alpha):g} %": self.coefficients + half_width,
            },
            index=self.column_names,
        )

    def predict(self, new_data: Optional[pd.DataFrame] = None) -> pd.Series:
        """
        Predicted values.

        Args:
            new_data: Table to predict on; fitted values are returned when None

        Returns:
            Series indexed like ``new_data``; rows with missing predictor
            values predict NaN
        """
        if new_data is None:
            return self.fitted_values.copy()

        if self.design is None:
            raise ValueError("this result carries no design information to predict from")

        matrix, complete = DesignMatrixBuilder().build_new(self.design, new_data)

        coefficients = self.coefficients
        if np.isnan(coefficients).any():
            logger.warning(f"Prediction from a rank-deficient fit; aliased terms ignored: {self.aliased}")
            coefficients = np.nan_to_num(coefficients, nan=0.0)

        predicted = np.full(len(new_data), np.nan)
        predicted[complete] = matrix @ coefficients
        return pd.Series(predicted, index=new_data.index, name="fit")

    def summary(self) -> str:
        """R-style text summary of the fit."""
        lines = ["Call:", f"lm(formula = {self.formula_string})", ""]

        resid = self.residuals.dropna().to_numpy()
        if len(resid) > 5:
            quartiles = np.quantile(resid, [0, 0.25, 0.5, 0.75, 1])
            lines.append("Residuals:")
            lines.append("    Min      1Q  Median      3Q     Max ")
            lines.append(" ".join(f"{q:7.4g}" for q in quartiles))
            lines.append("")

        if self.aliased:
            lines.append(f"Coefficients: ({len(self.aliased)} not defined because of singularities)")
        else:
            lines.append("Coefficients:")

        table = self.tidy().set_index("term")
        table.columns = ["Estimate", "Std. Error", "t value", "Pr(>|t|)"]
        lines.append(table.to_string(float_format=lambda v: f"{v:.4g}"))
        lines.append("")

        lines.append(
            f"Residual standard error: {self.sigma:.4g} on {self.df_residual} degrees of freedom"
        )
        if self.n_dropped:
            lines.append(f"  ({self.n_dropped} observations deleted due to missingness)")
        if self.r_squared is not None:
            if self.adj_r_squared is None or np.isnan(self.adj_r_squared):
                adjusted = "NaN"
            else:
                adjusted = f"{self.adj_r_squared:.4g}"
            lines.append(
                f"Multiple R-squared:  {self.r_squared:.4g},\tAdjusted R-squared:  {adjusted}"
            )
        if self.f_statistic is not None:
            lines.append(
                f"F-statistic: {self.f_statistic:.4g} on {self.f_df[0]} and {self.f_df[1]} DF,  "
                f"p-value: {self.f_p_value:.4g}"
            )

        return "\n".join(lines)

    def get_summary_stats(self) -> Dict[str, float]:
        """Get summary statistics for the model fit."""
        stats_dict = {
            "n_obs": self.n_obs,
            "rank": self.rank,
            "df_residual": self.df_residual,
            "sigma": float(self.sigma),
        }

        for name in ("r_squared", "adj_r_squared", "f_statistic", "log_likelihood", "aic", "bic"):
            value = getattr(self, name)
            if value is not None:
                stats_dict[name] = float(value)

        return stats_dict

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary representation."""
        result_dict = {
            "formula": self.formula_string,
            "na_action": self.na_action.value,
            "coefficients": self.get_parameter_dict(),
            "std_errors": dict(zip(self.column_names, map(float, self.std_errors))),
            "n_dropped": self.n_dropped,
        }

        result_dict.update(self.get_summary_stats())

        if self.aliased:
            result_dict["aliased"] = self.aliased

        result_dict["metadata"] = self.metadata.copy()

        if self.warnings:
            result_dict["warnings"] = self.warnings.copy()

        return result_dict

    def __repr__(self) -> str:
        r2 = "NA" if self.r_squared is None else f"{self.r_squared:.4f}"
        return f"LinearModelResult(formula={self.formula_string!r}, n_obs={self.n_obs}, r_squared={r2})"
