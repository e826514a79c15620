"""
Tests for the per-site lagged regression.
"""

import numpy as np
import pandas as pd
import pytest

from aquatics_forecast.model_fitter import (
    LAG_COLUMN,
    ModelFitError,
    build_site_series,
    fit_site_model,
)

from conftest import TODAY, TRUE_COEFS


def _drivers(site, dates, values):
    return pd.DataFrame({"site_id": site, "datetime": pd.DatetimeIndex(dates), "air_temperature": values})


def _targets(site, dates, values):
    return pd.DataFrame({
        "datetime": pd.DatetimeIndex(dates),
        "site_id": site,
        "variable": "temperature",
        "observation": values,
    })


class TestBuildSiteSeries:

    def test_calendar_runs_through_today_with_explicit_gaps(self):
        dates = pd.to_datetime(["2024-04-20", "2024-04-21", "2024-04-24"])
        series = build_site_series(
            _targets("BARC", dates, [10.0, 11.0, 12.0]),
            _drivers("BARC", pd.date_range("2024-04-15", "2024-04-30"), np.arange(16.0)),
            "BARC",
            TODAY,
        )
        assert series["datetime"].min() == pd.Timestamp("2024-04-20")
        assert series["datetime"].max() == TODAY
        assert series["datetime"].diff().dropna().eq(pd.Timedelta(days=1)).all()

        gap = series[series["datetime"] == pd.Timestamp("2024-04-22")]
        assert gap["temperature"].isna().all()
        assert gap["air_temperature"].isna().all()

    def test_lag_is_previous_calendar_day(self):
        dates = pd.date_range("2024-04-20", "2024-04-23")
        air = [5.0, 6.0, 7.0, 8.0]
        series = build_site_series(
            _targets("BARC", dates, [1.0, 2.0, 3.0, 4.0]),
            _drivers("BARC", dates, air),
            "BARC",
            "2024-04-23",
        )
        assert np.isnan(series[LAG_COLUMN].iloc[0])
        assert series[LAG_COLUMN].iloc[1:].tolist() == air[:-1]

    def test_lag_after_gap_is_missing(self):
        dates = pd.to_datetime(["2024-04-20", "2024-04-22"])
        series = build_site_series(
            _targets("BARC", dates, [1.0, 2.0]),
            _drivers("BARC", pd.date_range("2024-04-19", "2024-04-23"), np.arange(5.0)),
            "BARC",
            "2024-04-22",
        )
        row = series[series["datetime"] == pd.Timestamp("2024-04-22")]
        assert row[LAG_COLUMN].isna().all()

    def test_unobserved_site_is_empty(self, targets):
        series = build_site_series(targets, _drivers("NOOBS", [], []), "NOOBS", TODAY)
        assert series.empty


class TestFitSiteModel:

    def test_recovers_coefficients(self, noise_free_series):
        model = fit_site_model(noise_free_series, "BARC")
        coefs = model.coefficients
        assert coefs["intercept"] == pytest.approx(TRUE_COEFS["intercept"], abs=1e-6)
        assert coefs["air_temperature"] == pytest.approx(TRUE_COEFS["air"], abs=1e-6)
        assert coefs[LAG_COLUMN] == pytest.approx(TRUE_COEFS["lag"], abs=1e-6)
        assert np.allclose(model.residuals, 0.0, atol=1e-6)

    def test_uses_only_fully_observed_rows(self, noise_free_series):
        series = noise_free_series.copy()
        # Blank a response, a same-day driver and a lag on three different days
        series.loc[series.index[10], "temperature"] = np.nan
        series.loc[series.index[20], "air_temperature"] = np.nan
        series.loc[series.index[30], LAG_COLUMN] = np.nan

        expected = series.dropna(subset=["temperature", "air_temperature", LAG_COLUMN])
        model = fit_site_model(series, "BARC")
        assert model.n_obs == len(expected)
        assert len(model.residuals) == len(expected)

    def test_first_day_dropped_for_missing_lag(self):
        dates = pd.date_range("2024-04-01", "2024-04-10")
        rng = np.random.RandomState(0)
        air = rng.normal(10, 3, len(dates))
        series = build_site_series(
            _targets("BARC", dates, rng.normal(12, 1, len(dates))),
            _drivers("BARC", dates, air),
            "BARC",
            "2024-04-10",
        )
        assert fit_site_model(series, "BARC").n_obs == len(dates) - 1

    def test_no_observations_raises(self):
        with pytest.raises(ModelFitError, match="No observations"):
            fit_site_model(pd.DataFrame(columns=["datetime", "temperature", "air_temperature", LAG_COLUMN]), "NOOBS")

    def test_too_few_complete_rows_raises(self):
        dates = pd.date_range("2024-04-01", "2024-04-03")
        series = build_site_series(
            _targets("BARC", dates, [1.0, 2.0, 3.0]),
            _drivers("BARC", dates, [4.0, 5.0, 7.0]),
            "BARC",
            "2024-04-03",
        )
        with pytest.raises(ModelFitError, match="complete rows"):
            fit_site_model(series, "BARC")

    def test_constant_driver_is_rank_deficient(self):
        dates = pd.date_range("2024-04-01", "2024-04-10")
        series = build_site_series(
            _targets("BARC", dates, np.linspace(10, 12, len(dates))),
            _drivers("BARC", dates, np.full(len(dates), 9.0)),
            "BARC",
            "2024-04-10",
        )
        with pytest.raises(ModelFitError, match="rank deficient"):
            fit_site_model(series, "BARC")
