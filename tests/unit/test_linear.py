"""
Tests for least-squares fitting and fit results.
"""

import numpy as np
import pandas as pd
import pytest

from deferlm.config.settings import DeferLMConfig, NAAction
from deferlm.core.exceptions import (
    ColumnNotFoundError,
    FitError,
    MissingDataError,
    ModelSpecificationError,
)
from deferlm.models.linear import LinearModel, lm

pytestmark = pytest.mark.unit

# lm(dist ~ speed, cars) in R
CARS_INTERCEPT = -17.579095
CARS_SLOPE = 3.932409


class TestOrdinaryLeastSquares:
    """Estimates and statistics on the cars table."""

    def test_matches_r_coefficients(self, cars):
        fit = lm("dist ~ speed", cars)

        assert fit.column_names == ["(Intercept)", "speed"]
        assert fit.coefficients == pytest.approx([CARS_INTERCEPT, CARS_SLOPE], rel=1e-6)

    def test_matches_numpy_lstsq(self, cars):
        fit = lm("dist ~ speed + I(speed^2)", cars)

        X = np.column_stack([np.ones(len(cars)), cars["speed"], cars["speed"] ** 2])
        expected, *_ = np.linalg.lstsq(X, cars["dist"], rcond=None)
        np.testing.assert_allclose(fit.coefficients, expected, rtol=1e-8)

    def test_r_summary_statistics(self, cars):
        fit = lm("dist ~ speed", cars)

        # Values reported by summary(lm(dist ~ speed, cars)) in R
        assert fit.std_errors == pytest.approx([6.7584, 0.4155], abs=1e-4)
        assert fit.t_values == pytest.approx([-2.601, 9.464], abs=1e-3)
        assert fit.sigma == pytest.approx(15.38, abs=1e-2)
        assert fit.r_squared == pytest.approx(0.6511, abs=1e-4)
        assert fit.adj_r_squared == pytest.approx(0.6438, abs=1e-4)
        assert fit.f_statistic == pytest.approx(89.57, abs=1e-2)
        assert fit.f_df == (1, 48)
        assert fit.df_residual == 48
        assert fit.log_likelihood == pytest.approx(-206.5784, abs=1e-3)
        assert fit.aic == pytest.approx(419.1569, abs=1e-3)
        assert fit.bic == pytest.approx(424.8929, abs=1e-3)

    def test_residuals_and_fitted(self, cars):
        fit = lm("dist ~ speed", cars)

        np.testing.assert_allclose(fit.fitted_values + fit.residuals, cars["dist"])
        assert fit.residuals.sum() == pytest.approx(0.0, abs=1e-9)
        pd.testing.assert_index_equal(fit.residuals.index, cars.index)

    def test_no_intercept(self, cars):
        fit = lm("dist ~ speed - 1", cars)

        expected = np.sum(cars["speed"] * cars["dist"]) / np.sum(cars["speed"] ** 2)
        assert fit.coefficients == pytest.approx([expected])

    def test_intercept_only(self, cars):
        fit = lm("dist ~ 1", cars)

        assert fit.coefficients == pytest.approx([cars["dist"].mean()])
        assert fit.f_statistic is None

    def test_response_transformation(self, cars):
        fit = lm("log(dist) ~ speed", cars)
        assert fit.formula_string == "log(dist) ~ speed"

    def test_weighted(self, cars):
        data = cars.assign(w=np.linspace(0.5, 2.0, len(cars)))
        fit = lm("dist ~ speed", data, weights="w")

        sw = np.sqrt(data["w"].to_numpy())
        X = np.column_stack([np.ones(len(data)), data["speed"]])
        expected, *_ = np.linalg.lstsq(X * sw[:, None], data["dist"] * sw, rcond=None)
        np.testing.assert_allclose(fit.coefficients, expected, rtol=1e-8)
        assert fit.weighted

    def test_non_positive_weights(self, cars):
        data = cars.assign(w=0.0)
        with pytest.raises(FitError):
            lm("dist ~ speed", data, weights="w")


class TestRankDeficiency:
    """Aliased columns get NaN coefficients instead of failing."""

    def test_duplicate_column_is_aliased(self, cars):
        data = cars.assign(speed2=cars["speed"] * 2)
        fit = lm("dist ~ speed + speed2", data)

        assert fit.aliased == ["speed2"]
        assert np.isnan(fit.coefficients[2])
        assert fit.rank == 2
        assert fit.coefficients[:2] == pytest.approx([CARS_INTERCEPT, CARS_SLOPE], rel=1e-6)
        assert fit.warnings

    def test_raw_poly_above_unique_points(self):
        data = pd.DataFrame({"x": [1.0, 2.0, 1.0, 2.0, 1.0], "y": [1.0, 3.0, 1.5, 2.5, 0.5]})
        fit = lm("y ~ poly(x, 3, raw = TRUE)", data)

        assert fit.rank == 2
        assert len(fit.aliased) == 2

    def test_prediction_ignores_aliased(self, cars):
        data = cars.assign(speed2=cars["speed"] * 2)
        fit = lm("dist ~ speed + speed2", data)

        predicted = fit.predict(data.head(3))
        expected = CARS_INTERCEPT + CARS_SLOPE * data["speed"].head(3)
        np.testing.assert_allclose(predicted, expected, rtol=1e-6)


class TestMissingValuePolicy:
    """NAAction handling in lm()."""

    def test_default_omits(self, cars_with_na):
        fit = lm("dist ~ speed", cars_with_na)

        assert fit.na_action == NAAction.OMIT
        assert fit.n_obs == 47
        assert sorted(fit.na_index) == [3, 17, 30]
        assert len(fit.residuals) == 47

    def test_exclude_pads_with_nan(self, cars_with_na):
        fit = lm("dist ~ speed", cars_with_na, na_action="exclude")

        assert fit.n_obs == 47
        assert len(fit.residuals) == 50
        assert fit.residuals.isna().sum() == 3
        assert np.isnan(fit.fitted_values.loc[17])
        pd.testing.assert_index_equal(fit.residuals.index, cars_with_na.index)

    def test_fail_raises(self, cars_with_na):
        with pytest.raises(MissingDataError):
            lm("dist ~ speed", cars_with_na, na_action=NAAction.FAIL)

    def test_configured_default(self, cars_with_na):
        model = LinearModel(config=DeferLMConfig(fitting={"default_na_action": "fail"}))
        with pytest.raises(MissingDataError):
            model.fit("dist ~ speed", cars_with_na)

    def test_environment_default(self, cars_with_na, monkeypatch):
        from deferlm.config.settings import reset_default_config

        monkeypatch.setenv("DEFERLM_NA_ACTION", "fail")
        reset_default_config()
        with pytest.raises(MissingDataError):
            lm("dist ~ speed", cars_with_na)


class TestFitErrors:
    """Problems that prevent a fit."""

    def test_missing_column(self, cars):
        with pytest.raises(ColumnNotFoundError):
            lm("dist ~ weight", cars)

    def test_missing_column_is_key_error(self, cars):
        with pytest.raises(KeyError):
            lm("height ~ speed", cars)

    def test_one_sided_formula(self, cars):
        with pytest.raises(ModelSpecificationError):
            lm("~ speed", cars)

    def test_too_few_rows(self, cars):
        with pytest.raises(FitError) as exc_info:
            lm("dist ~ poly(speed, 3, raw = TRUE)", cars.head(3))
        assert exc_info.value.context["n_obs"] == 3

    def test_no_complete_rows(self):
        data = pd.DataFrame({"x": [np.nan, np.nan], "y": [1.0, 2.0]})
        with pytest.raises(FitError):
            lm("y ~ x", data)

    def test_infinite_values(self, cars):
        data = cars.copy()
        data.loc[0, "speed"] = np.inf
        with pytest.raises(FitError):
            lm("dist ~ speed", data)

    def test_non_finite_derived_values(self):
        # Only missing source values are dropped; log(0) is not
        data = pd.DataFrame({"x": [0.0, 1.0, 2.0, 3.0], "y": [1.0, 2.0, 2.5, 3.5]})
        with pytest.raises(FitError) as exc_info:
            lm("y ~ log(x)", data)
        assert "NA/NaN/Inf" in str(exc_info.value)


class TestResultViews:
    """tidy, glance, confint, predict, summary and to_dict."""

    @pytest.fixture
    def fit(self, cars):
        return lm("dist ~ speed", cars)

    def test_tidy(self, fit):
        table = fit.tidy()

        assert list(table.columns) == ["term", "estimate", "std_error", "statistic", "p_value"]
        assert table["term"].tolist() == ["(Intercept)", "speed"]
        assert table.loc[1, "p_value"] == pytest.approx(1.49e-12, rel=1e-2)

    def test_glance(self, fit):
        row = fit.glance().iloc[0]

        assert row["nobs"] == 50
        assert row["r_squared"] == pytest.approx(0.6511, abs=1e-4)
        assert row["p_value"] == pytest.approx(1.49e-12, rel=1e-2)

    def test_confint(self, fit):
        intervals = fit.confint()

        assert list(intervals.columns) == ["2.5 %", "97.5 %"]
        assert intervals.loc["speed"].tolist() == pytest.approx([3.096964, 4.767853], abs=1e-5)

    @pytest.mark.parametrize("level", [0.0, 1.0, -0.5])
    def test_confint_level_bounds(self, fit, level):
        with pytest.raises(ValueError):
            fit.confint(level)

    def test_predict(self, fit):
        new = pd.DataFrame({"speed": [10.0, np.nan, 20.0]}, index=["a", "b", "c"])
        predicted = fit.predict(new)

        assert predicted.index.tolist() == ["a", "b", "c"]
        assert predicted["a"] == pytest.approx(CARS_INTERCEPT + 10 * CARS_SLOPE, rel=1e-6)
        assert np.isnan(predicted["b"])

    def test_predict_without_data_returns_fitted(self, fit):
        pd.testing.assert_series_equal(fit.predict(), fit.fitted_values)

    def test_predict_orthogonal_poly_matches_fitted(self, cars):
        fit = lm("dist ~ poly(speed, 2)", cars)
        np.testing.assert_allclose(fit.predict(cars), fit.fitted_values, rtol=1e-10)

    def test_orthogonal_and_raw_fits_agree(self, cars):
        ortho = lm("dist ~ poly(speed, 2)", cars)
        raw = lm("dist ~ poly(speed, 2, raw = TRUE)", cars)

        np.testing.assert_allclose(ortho.fitted_values, raw.fitted_values, rtol=1e-8)
        assert ortho.r_squared == pytest.approx(raw.r_squared)

    def test_summary(self, cars_with_na):
        text = lm("dist ~ speed", cars_with_na).summary()

        assert "lm(formula = dist ~ speed)" in text
        assert "(3 observations deleted due to missingness)" in text
        assert "Residual standard error" in text

    def test_summary_of_exact_fit(self):
        data = pd.DataFrame({"x": [1.0, 2.0, 3.0], "y": [1.0, 4.0, 10.0]})
        fit = lm("y ~ poly(x, 2, raw = TRUE)", data)

        assert fit.df_residual == 0
        assert np.isnan(fit.adj_r_squared)
        assert "Adjusted R-squared:  NaN" in fit.summary()

    def test_to_dict(self, fit):
        result = fit.to_dict()

        assert result["formula"] == "dist ~ speed"
        assert result["coefficients"]["speed"] == pytest.approx(CARS_SLOPE, rel=1e-6)
        assert result["n_obs"] == 50
        assert result["na_action"] == "omit"

    def test_params(self, fit):
        assert fit.params["speed"] == pytest.approx(CARS_SLOPE, rel=1e-6)

    def test_repr(self, fit):
        assert repr(fit).startswith("LinearModelResult(formula='dist ~ speed'")

    def test_deterministic(self, cars):
        first = lm("dist ~ poly(speed, 3, raw = TRUE)", cars)
        second = lm("dist ~ poly(speed, 3, raw = TRUE)", cars)
        np.testing.assert_array_equal(first.coefficients, second.coefficients)
