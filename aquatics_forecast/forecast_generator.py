"""
Ensemble Forecast Generation
============================

Drives a fitted site model forward over every weather-ensemble member and
adds bootstrap-resampled residuals to produce ``N_BOOTSTRAP_REPS`` stochastic
replicates per member.
"""

from __future__ import annotations

import zlib
from typing import Optional

import numpy as np
import pandas as pd

import config
from .ensemble_assembler import forecast_members
from .model_fitter import FEATURE_COLUMNS, SiteModel, add_lag_feature
from .logging_config import get_logger

logger = get_logger(__name__)

GENERATED_COLUMNS = [
    "site_id", "datetime", "scenario", "member", "rep",
    "parameter", "variable", "prediction",
]


def site_random_state(seed: int, site_id: str) -> np.random.RandomState:
    """Per-site generator so results do not depend on the order sites run in."""
    return np.random.RandomState((int(seed) + zlib.crc32(site_id.encode("utf-8"))) % (2 ** 32))


def combined_parameter(rep, scenario, stride: Optional[int] = None):
    """Unique id for a (weather scenario, bootstrap replicate) pair."""
    stride = stride or config.PARAMETER_STRIDE
    return rep + stride * (scenario - 1)


def member_driver_frame(member_df: pd.DataFrame, history: Optional[pd.Series] = None) -> pd.DataFrame:
    """
    Lay one member's trajectory on a daily calendar with its lag-1 driver.

    The first day's lag comes from ``history`` (the site's historical daily
    driver, indexed by date) when it covers the previous day.
    """
    series = member_df.sort_values("datetime").set_index("datetime")[config.DRIVER_VARIABLE]
    calendar = pd.date_range(series.index.min(), series.index.max(), freq="D")
    frame = series.reindex(calendar).rename_axis("datetime").reset_index()

    seed_value = np.nan
    if history is not None and len(frame):
        seed_value = history.get(frame["datetime"].iloc[0] - pd.Timedelta(days=1), np.nan)
    return add_lag_feature(frame, seed_value=seed_value)


def generate_site_forecast(
    model: SiteModel,
    site_ensemble: pd.DataFrame,
    today,
    n_reps: Optional[int] = None,
    rng: Optional[np.random.RandomState] = None,
    history: Optional[pd.Series] = None,
    reserved_member: Optional[int] = None,
    variable: Optional[str] = None,
) -> pd.DataFrame:
    """
    Generate the bootstrap ensemble forecast for one site.

    Members are the non-reserved weather members with at least one day after
    ``today``; ``scenario`` is each member's 1-based rank. Days before or on
    ``today`` only anchor the lag and are not returned.

    Returns: DataFrame with GENERATED_COLUMNS.
    """
    n_reps = n_reps or config.N_BOOTSTRAP_REPS
    variable = variable or config.TARGET_VARIABLE
    today = pd.Timestamp(today).normalize()
    if rng is None:
        rng = site_random_state(config.RANDOM_SEED, model.site_id)
    if len(model.residuals) == 0:
        raise ValueError(f"{model.site_id}: model has no residuals to resample")

    usable = forecast_members(site_ensemble, reserved_member)
    horizon_members = sorted(usable.loc[usable["datetime"] > today, "parameter"].unique())
    if not horizon_members:
        logger.warning("No weather members extend past %s for %s", today.date(), model.site_id)
        return pd.DataFrame(columns=GENERATED_COLUMNS)

    frames = []
    reps = np.arange(1, n_reps + 1)
    for scenario, member in enumerate(horizon_members, start=1):
        drivers = member_driver_frame(usable[usable["parameter"] == member], history)
        drivers = drivers.dropna(subset=FEATURE_COLUMNS)
        drivers = drivers[drivers["datetime"] > today]
        if drivers.empty:
            continue

        point = model.predict(drivers)
        draws = rng.choice(model.residuals, size=(n_reps, len(point)), replace=True)
        sims = point[np.newaxis, :] + draws

        frames.append(pd.DataFrame({
            "site_id": model.site_id,
            "datetime": np.tile(drivers["datetime"].to_numpy(), n_reps),
            "scenario": scenario,
            "member": int(member),
            "rep": np.repeat(reps, len(point)),
            "parameter": np.repeat(combined_parameter(reps, scenario), len(point)),
            "variable": variable,
            "prediction": sims.ravel(),
        }))

    if not frames:
        return pd.DataFrame(columns=GENERATED_COLUMNS)

    forecast = pd.concat(frames, ignore_index=True)[GENERATED_COLUMNS]
    logger.debug(
        "%s: %d members x %d reps over %d days",
        model.site_id, len(frames), n_reps, forecast["datetime"].nunique(),
    )
    return forecast
