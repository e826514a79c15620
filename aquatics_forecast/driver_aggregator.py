"""
Driver Aggregation
==================

Reduces sub-daily NOAA air-temperature records (historical stage 3 or
forecast stage 2 ensembles) to daily means per site in degrees Celsius.
"""

from __future__ import annotations

from typing import Iterable, Optional

import pandas as pd

import config
from .logging_config import get_logger

logger = get_logger(__name__)


def to_calendar_day(values) -> pd.Series:
    """
    Truncate timestamps to naive UTC calendar days.

    Timezone-aware inputs are converted to UTC first so a 23:00-05:00
    record lands on its UTC date.
    """
    stamps = pd.to_datetime(pd.Series(values), utc=True)
    return stamps.dt.tz_localize(None).dt.normalize()


def aggregate_daily_drivers(
    raw: pd.DataFrame,
    start_date=None,
    by_member: bool = False,
    site_ids: Optional[Iterable[str]] = None,
    variable: Optional[str] = None,
) -> pd.DataFrame:
    """
    Aggregate raw driver records to one row per (site, day[, member]).

    Kelvin predictions are converted to Celsius. Missing intraday values are
    skipped by the mean; a day whose values are all missing is dropped rather
    than reported as zero.

    Returns: DataFrame with columns [site_id, datetime, air_temperature]
    plus ``parameter`` when ``by_member`` is set.
    """
    variable = variable or config.DRIVER_VARIABLE
    required = ["site_id", "datetime", "prediction"] + (["parameter"] if by_member else [])
    missing_cols = [col for col in required if col not in raw.columns]
    if missing_cols:
        raise ValueError(f"Driver records missing columns: {missing_cols}")

    df = raw.copy()
    if "variable" in df.columns:
        df = df[df["variable"] == variable]
    if site_ids is not None:
        df = df[df["site_id"].isin(list(site_ids))]

    df["datetime"] = to_calendar_day(df["datetime"]).values
    if start_date is not None:
        df = df[df["datetime"] >= pd.Timestamp(start_date)]

    df["prediction"] = pd.to_numeric(df["prediction"], errors="coerce")

    keys = ["site_id", "datetime"] + (["parameter"] if by_member else [])
    daily = (
        df.groupby(keys, as_index=False)["prediction"]
        .mean()
        .rename(columns={"prediction": config.DRIVER_VARIABLE})
    )

    n_before = len(daily)
    daily = daily.dropna(subset=[config.DRIVER_VARIABLE])
    if len(daily) < n_before:
        logger.warning(
            "Dropped %d site-days with no valid %s values",
            n_before - len(daily),
            variable,
        )

    daily[config.DRIVER_VARIABLE] = daily[config.DRIVER_VARIABLE] - config.KELVIN_OFFSET
    if by_member:
        daily["parameter"] = daily["parameter"].astype(int)

    daily = daily.sort_values(keys).reset_index(drop=True)
    logger.info(
        "Aggregated %d raw %s records to %d daily rows (%s)",
        len(df),
        variable,
        len(daily),
        "per member" if by_member else "deterministic",
    )
    return daily
