"""
Per-Site Model Fitting
======================

Fits ``temperature ~ air_temperature + lag1(air_temperature)`` for one site
on its gap-tolerant daily series. The residuals of the fit are kept for the
bootstrap forecast.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression

import config
from .driver_aggregator import to_calendar_day
from .logging_config import get_logger

logger = get_logger(__name__)

LAG_COLUMN = f"{config.DRIVER_VARIABLE}_lag1"
FEATURE_COLUMNS = [config.DRIVER_VARIABLE, LAG_COLUMN]


class ModelFitError(ValueError):
    """Raised when a site has no usable rows for the lagged regression."""


@dataclass
class SiteModel:
    site_id: str
    regressor: LinearRegression
    residuals: np.ndarray
    n_obs: int

    @property
    def coefficients(self) -> dict:
        return {
            "intercept": float(self.regressor.intercept_),
            config.DRIVER_VARIABLE: float(self.regressor.coef_[0]),
            LAG_COLUMN: float(self.regressor.coef_[1]),
        }

    def predict(self, features: pd.DataFrame) -> np.ndarray:
        return self.regressor.predict(features[FEATURE_COLUMNS].to_numpy(dtype=float))


def add_lag_feature(df: pd.DataFrame, seed_value=np.nan) -> pd.DataFrame:
    """
    Add the previous calendar day's driver value.

    ``df`` must be on a complete daily calendar sorted by date; the first
    row's lag is ``seed_value``.
    """
    df = df.copy()
    df[LAG_COLUMN] = df[config.DRIVER_VARIABLE].shift(1)
    if len(df):
        df.iloc[0, df.columns.get_loc(LAG_COLUMN)] = seed_value
    return df


def build_site_series(
    targets: pd.DataFrame,
    past_daily: pd.DataFrame,
    site_id: str,
    today,
    variable: str = None,
) -> pd.DataFrame:
    """
    Join a site's target series with its historical drivers on a daily calendar.

    Target rows are left-joined with the daily drivers, then re-indexed from
    the first target date through ``today``. Inserted days carry NA for
    every value, so a driver lag that falls on an unobserved day is NA.

    Returns: DataFrame [datetime, temperature, air_temperature, air_temperature_lag1];
    empty when the site has no target rows.
    """
    variable = variable or config.TARGET_VARIABLE
    today = pd.Timestamp(today).normalize()
    columns = ["datetime", variable, config.DRIVER_VARIABLE, LAG_COLUMN]

    site_targets = targets[targets["site_id"] == site_id]
    if "variable" in site_targets.columns:
        site_targets = site_targets[site_targets["variable"] == variable]
    if site_targets.empty:
        return pd.DataFrame(columns=columns)

    wide = site_targets[["datetime", "observation"]].rename(columns={"observation": variable})
    wide = wide.assign(datetime=to_calendar_day(wide["datetime"]).values)
    # One observation per day; duplicated target rows keep the mean.
    wide = wide.groupby("datetime", as_index=False)[variable].mean()

    site_drivers = past_daily.loc[
        past_daily["site_id"] == site_id, ["datetime", config.DRIVER_VARIABLE]
    ]
    joined = wide.merge(site_drivers, on="datetime", how="left")

    calendar = pd.date_range(joined["datetime"].min(), max(joined["datetime"].max(), today), freq="D")
    series = (
        joined.set_index("datetime")
        .reindex(calendar)
        .rename_axis("datetime")
        .reset_index()
    )
    series = add_lag_feature(series)
    return series[columns]


def fit_site_model(series: pd.DataFrame, site_id: str, variable: str = None) -> SiteModel:
    """
    Fit the lagged regression for one site.

    Rows with a missing response or either missing predictor are excluded.
    Raises ModelFitError when nothing was observed or the remaining design
    cannot identify intercept and both slopes.
    """
    variable = variable or config.TARGET_VARIABLE
    if series.empty:
        raise ModelFitError(f"No observations present for {site_id}")

    usable = series.dropna(subset=[variable] + FEATURE_COLUMNS)
    min_rows = max(3, int(getattr(config, "MIN_TRAINING_SAMPLES", 3)))
    if len(usable) < min_rows:
        raise ModelFitError(
            f"{site_id}: {len(usable)} complete rows, need at least {min_rows}"
        )

    X = usable[FEATURE_COLUMNS].to_numpy(dtype=float)
    y = usable[variable].to_numpy(dtype=float)

    design = np.column_stack([np.ones(len(X)), X])
    if np.linalg.matrix_rank(design) < design.shape[1]:
        raise ModelFitError(f"{site_id}: driver design matrix is rank deficient")

    regressor = LinearRegression()
    regressor.fit(X, y)
    residuals = y - regressor.predict(X)

    logger.debug(
        "Fitted %s on %d rows: intercept=%.3f, b0=%.3f, b1=%.3f",
        site_id, len(usable), regressor.intercept_, regressor.coef_[0], regressor.coef_[1],
    )
    return SiteModel(site_id=site_id, regressor=regressor, residuals=residuals, n_obs=len(usable))
