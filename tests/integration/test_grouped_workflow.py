"""
End-to-end tests: load a table from disk, fit polynomial models per group
through the public package namespace and summarise the fits.
"""

import numpy as np
import pandas as pd
import pytest

import deferlm as dl


pytestmark = pytest.mark.integration


@pytest.fixture
def station_file(tmp_path):
    """CSV of three stations with known quadratic trends plus noise and gaps."""
    rng = np.random.default_rng(2024)
    truths = {"alpha": (1.0, 0.5, -0.02), "beta": (3.0, -0.2, 0.01), "gamma": (0.0, 1.0, 0.0)}

    frames = []
    for station, (b0, b1, b2) in truths.items():
        t = np.arange(40, dtype=float)
        y = b0 + b1 * t + b2 * t ** 2 + rng.normal(0.0, 0.05, size=t.size)
        frames.append(pd.DataFrame({"station": station, "t": t, "y": y}))

    data = pd.concat(frames, ignore_index=True).sample(frac=1.0, random_state=3)
    data.loc[data.index[:4], "y"] = np.nan

    path = tmp_path / "stations.csv"
    data.to_csv(path, index=False)
    return path, truths


class TestGroupedWorkflow:

    def test_recovers_each_trend(self, station_file):
        path, truths = station_file
        table = dl.load_table(path, categorical=["station"])

        fits = dl.fit_poly_by_group(table, "station", dl.col.y, dl.col.t, degree=2)

        assert fits["station"].tolist() == ["alpha", "beta", "gamma"]
        for station, fit in zip(fits["station"], fits["fit"]):
            assert fit.coefficients == pytest.approx(truths[station], abs=0.15)

    def test_missing_values_dropped_once_overall(self, station_file):
        path, _ = station_file
        table = dl.load_table(path, categorical=["station"])

        fits = dl.group_apply(table, "station", dl.lm_poly_raw, dl.col.y, dl.col.t, 2)

        assert sum(fit.n_obs for fit in fits["fit"]) == len(table) - 4
        assert sum(fit.n_dropped for fit in fits["fit"]) == 4

    def test_strict_policy_fails_whole_run(self, station_file):
        path, _ = station_file
        table = dl.load_table(path)

        with pytest.raises(dl.MissingDataError):
            dl.group_apply(table, "station", dl.lm_poly_raw, dl.col.y, dl.col.t, 2, na_action="fail")

    def test_tidy_summary(self, station_file):
        path, truths = station_file
        table = dl.load_table(path, categorical=["station"])

        fits = dl.fit_poly_by_group(table, "station", dl.col.y, dl.col.t, 2, parallel=True)
        long = dl.unnest_results(fits)

        quadratic = long[long["term"] == "poly(t, 2, raw = TRUE)2"].set_index("station")
        assert quadratic.loc["alpha", "estimate"] == pytest.approx(truths["alpha"][2], abs=1e-3)
        assert quadratic.loc["gamma", "estimate"] == pytest.approx(0.0, abs=1e-3)

    def test_template_and_direct_formula_agree(self, station_file):
        path, _ = station_file
        table = dl.load_table(path)
        subset = table[table["station"] == "beta"]

        template = dl.FormulaTemplate.parse("{response} ~ poly({predictor}, {degree}, raw = TRUE)")
        filled = template.fill(response=dl.col.y, predictor="t", degree=2)

        from_template = dl.lm(filled, subset)
        from_builder = dl.lm_poly_raw(subset, dl.col.y, dl.col.t, 2)
        np.testing.assert_allclose(from_template.coefficients, from_builder.coefficients)

    def test_configuration_drives_defaults(self, station_file):
        path, _ = station_file
        table = dl.load_table(path, categorical=["station"])

        dl.configure(**{"grouping.result_column": "model", "fitting.default_na_action": "exclude"})
        fits = dl.fit_poly_by_group(table, "station", dl.col.y, dl.col.t, 1)

        assert "model" in fits.columns
        fit = fits["model"].iloc[0]
        assert fit.na_action == dl.NAAction.EXCLUDE
        assert len(fit.residuals) == fit.n_obs + fit.n_dropped
