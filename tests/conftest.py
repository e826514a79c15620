"""
Pytest configuration and fixtures for the aquatics forecast tests.

All fixtures are synthetic and offline: a processing date of 2024-05-01,
sites BARC (last observation 2024-04-25, five gap-fill days), CRAM (last
observation yesterday, no gap-fill) and NOOBS (listed but never observed).
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

TODAY = pd.Timestamp("2024-05-01")
HOUR_OFFSETS_K = [-2.0, -1.0, 1.0, 2.0]
TRUE_COEFS = {"intercept": 2.0, "air": 0.6, "lag": 0.3}


def daily_air(dates, site_id):
    """Deterministic but irregular daily air temperature in Celsius."""
    rng = np.random.RandomState({"BARC": 1, "CRAM": 2}.get(site_id, 3))
    doy = pd.DatetimeIndex(dates).dayofyear.to_numpy()
    return 15 + 5 * np.sin(2 * np.pi * doy / 365) + rng.normal(0, 2, len(doy))


def hourly_records(daily: pd.Series, site_id: str, extra=None) -> pd.DataFrame:
    """Four 6-hourly Kelvin records per day whose mean is the daily value."""
    rows = []
    for day, value in daily.items():
        for hour, offset in zip((0, 6, 12, 18), HOUR_OFFSETS_K):
            row = {
                "datetime": pd.Timestamp(day).tz_localize("UTC") + pd.Timedelta(hours=hour),
                "site_id": site_id,
                "variable": "air_temperature",
                "prediction": value + 273.15 + offset,
            }
            if extra:
                row.update(extra)
            rows.append(row)
    return pd.DataFrame(rows)


def make_targets(site_id, start, last_obs, air: pd.Series, noise=0.0, drop_days=()):
    dates = pd.date_range(start, last_obs, freq="D")
    lag = air.shift(1)
    rng = np.random.RandomState(7)
    rows = []
    for day in dates:
        if day in drop_days:
            continue
        value = (
            TRUE_COEFS["intercept"]
            + TRUE_COEFS["air"] * air[day]
            + TRUE_COEFS["lag"] * lag[day]
            + rng.normal(0, noise)
        )
        rows.append({"datetime": day, "site_id": site_id, "variable": "temperature", "observation": value})
    return pd.DataFrame(rows)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def past_air():
    """Daily historical air temperature by site, 2023-12-20 .. 2024-04-30."""
    dates = pd.date_range("2023-12-20", TODAY - pd.Timedelta(days=1), freq="D")
    return {site: pd.Series(daily_air(dates, site), index=dates) for site in ("BARC", "CRAM")}


@pytest.fixture
def noaa_past(past_air):
    return pd.concat(
        [hourly_records(series, site) for site, series in past_air.items()],
        ignore_index=True,
    )


@pytest.fixture
def noaa_future():
    """31-member (0..30) forecast issued 2024-04-30 covering 2024-05-01 .. 2024-05-07."""
    dates = pd.date_range(TODAY, TODAY + pd.Timedelta(days=6), freq="D")
    frames = []
    for site in ("BARC", "CRAM"):
        base = pd.Series(daily_air(dates, site), index=dates)
        for member in range(31):
            frames.append(hourly_records(base + 0.1 * member, site, extra={"parameter": member}))
    return pd.concat(frames, ignore_index=True)


@pytest.fixture
def targets(past_air):
    barc = make_targets(
        "BARC", "2024-01-01", "2024-04-25", past_air["BARC"], noise=0.2,
        drop_days=set(pd.date_range("2024-02-10", "2024-02-14")),
    )
    cram = make_targets("CRAM", "2024-02-01", "2024-04-30", past_air["CRAM"], noise=0.2)
    # Trailing missing observation and an unrelated variable
    extra = pd.DataFrame([
        {"datetime": pd.Timestamp("2024-04-28"), "site_id": "BARC", "variable": "temperature", "observation": np.nan},
        {"datetime": pd.Timestamp("2024-04-29"), "site_id": "BARC", "variable": "oxygen", "observation": 8.1},
    ])
    return pd.concat([barc, cram, extra], ignore_index=True)


@pytest.fixture
def site_ids():
    return ["BARC", "CRAM", "NOOBS"]


@pytest.fixture
def noise_free_series(past_air):
    """Target-joined daily series for BARC with exact linear targets."""
    from aquatics_forecast.model_fitter import build_site_series

    targets = make_targets("BARC", "2024-01-01", "2024-04-25", past_air["BARC"])
    past_daily = pd.DataFrame({
        "site_id": "BARC",
        "datetime": past_air["BARC"].index,
        "air_temperature": past_air["BARC"].values,
    })
    return build_site_series(targets, past_daily, "BARC", TODAY)
