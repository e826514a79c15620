"""
Weather Ensemble Assembly
=========================

Aligns the deterministic historical driver trajectory with the stochastic
forecast ensemble so every site has one member-indexed weather table.

Between a site's last water-temperature observation and the first forecast
date only the stage 3 historical trajectory exists. That single trajectory
is broadcast across ``GAP_FILL_MEMBERS`` synthetic members and stacked on
top of the forecast ensemble rows, which keep the feed's own member
numbering. A member id therefore names one continuous series running from
the gap-fill window into the forecast horizon.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import pandas as pd

import config
from .driver_aggregator import to_calendar_day
from .logging_config import get_logger

logger = get_logger(__name__)

ENSEMBLE_COLUMNS = ["site_id", "datetime", config.DRIVER_VARIABLE, "parameter"]


@dataclass(frozen=True)
class DeterministicTrajectory:
    """A single driver series for one site, indexed by day."""

    site_id: str
    values: pd.Series

    @classmethod
    def from_frame(cls, site_id: str, df: pd.DataFrame) -> "DeterministicTrajectory":
        series = (
            df.sort_values("datetime")
            .set_index("datetime")[config.DRIVER_VARIABLE]
            .astype(float)
        )
        return cls(site_id=site_id, values=series)

    def broadcast(self, n_members: int) -> "EnsembleTrajectory":
        """Replicate the series as members 1..n_members."""
        members = {member: self.values.copy() for member in range(1, n_members + 1)}
        return EnsembleTrajectory(site_id=self.site_id, members=members)


@dataclass(frozen=True)
class EnsembleTrajectory:
    """Driver series keyed by ensemble member for one site."""

    site_id: str
    members: Dict[int, pd.Series] = field(default_factory=dict)

    @classmethod
    def from_frame(cls, site_id: str, df: pd.DataFrame) -> "EnsembleTrajectory":
        members = {}
        for member, member_df in df.groupby("parameter"):
            members[int(member)] = (
                member_df.sort_values("datetime")
                .set_index("datetime")[config.DRIVER_VARIABLE]
                .astype(float)
            )
        return cls(site_id=site_id, members=members)

    def to_frame(self) -> pd.DataFrame:
        frames = []
        for member, series in self.members.items():
            if series.empty:
                continue
            frames.append(pd.DataFrame({
                "site_id": self.site_id,
                "datetime": series.index,
                config.DRIVER_VARIABLE: series.values,
                "parameter": member,
            }))
        if not frames:
            return pd.DataFrame(columns=ENSEMBLE_COLUMNS)
        return pd.concat(frames, ignore_index=True)[ENSEMBLE_COLUMNS]


def compute_forecast_starts(targets: pd.DataFrame, variable: Optional[str] = None) -> pd.DataFrame:
    """
    Start each site's forecast the day after its most recent non-NA target.

    Returns: DataFrame with columns [site_id, start_date]
    """
    variable = variable or config.TARGET_VARIABLE
    observed = targets.dropna(subset=["datetime", "site_id", "observation"])
    if "variable" in observed.columns:
        observed = observed[observed["variable"] == variable]

    if observed.empty:
        logger.warning("No non-missing %s observations in targets", variable)
        return pd.DataFrame(columns=["site_id", "start_date"])

    last_obs = to_calendar_day(observed["datetime"]).groupby(observed["site_id"]).max()
    starts = (last_obs + pd.Timedelta(days=1)).rename("start_date").reset_index()
    return starts.sort_values("site_id").reset_index(drop=True)


def gap_fill_window(
    past_daily: pd.DataFrame,
    site_id: str,
    start_date,
    end_date,
) -> pd.DataFrame:
    """Historical daily drivers for one site with start_date <= date < end_date."""
    mask = (
        (past_daily["site_id"] == site_id)
        & (past_daily["datetime"] >= pd.Timestamp(start_date))
        & (past_daily["datetime"] < pd.Timestamp(end_date))
    )
    return past_daily.loc[mask]


def assemble_weather_ensemble(
    past_daily: pd.DataFrame,
    future_daily: pd.DataFrame,
    forecast_starts: pd.DataFrame,
    n_members: Optional[int] = None,
) -> pd.DataFrame:
    """
    Build the combined weather ensemble for every site.

    Args:
        past_daily: deterministic daily drivers [site_id, datetime, air_temperature]
        future_daily: forecast daily drivers with a ``parameter`` member column
        forecast_starts: output of ``compute_forecast_starts``
        n_members: synthetic member count for the gap-fill window

    Returns:
        DataFrame [site_id, datetime, air_temperature, parameter] sorted by
        site, date and member.
    """
    n_members = n_members or config.GAP_FILL_MEMBERS
    if future_daily.empty:
        raise ValueError("No forecast weather available to assemble an ensemble")

    global_first = future_daily["datetime"].min()
    first_by_site = future_daily.groupby("site_id")["datetime"].min().to_dict()

    gap_frames = []
    for site_id, start_date in forecast_starts[["site_id", "start_date"]].itertuples(index=False):
        end_date = first_by_site.get(site_id, global_first)
        window = gap_fill_window(past_daily, site_id, start_date, end_date)
        if window.empty:
            logger.debug("No gap-fill days for %s (%s to %s)", site_id, start_date, end_date)
            continue
        trajectory = DeterministicTrajectory.from_frame(site_id, window).broadcast(n_members)
        gap_frames.append(trajectory.to_frame())
        logger.debug("Gap-filled %d days for %s", len(window), site_id)

    forecast_rows = future_daily[ENSEMBLE_COLUMNS]
    combined = pd.concat(gap_frames + [forecast_rows], ignore_index=True)
    combined["parameter"] = combined["parameter"].astype(int)
    combined[config.DRIVER_VARIABLE] = combined[config.DRIVER_VARIABLE].astype(float)
    combined = combined.sort_values(["site_id", "datetime", "parameter"]).reset_index(drop=True)

    duplicated = combined.duplicated(["site_id", "datetime", "parameter"])
    if duplicated.any():
        raise ValueError(
            f"Weather ensemble has {int(duplicated.sum())} duplicate site/date/member rows"
        )

    logger.info(
        "Weather ensemble assembled: %d rows, %d sites (%d gap-filled)",
        len(combined),
        combined["site_id"].nunique(),
        len(gap_frames),
    )
    return combined


def forecast_members(site_ensemble: pd.DataFrame, reserved_member: Optional[int] = None) -> pd.DataFrame:
    """Drop the reserved member before the ensemble is used for forecasting."""
    if reserved_member is None:
        reserved_member = config.RESERVED_MEMBER
    return site_ensemble[site_ensemble["parameter"] != reserved_member]


def check_member_continuity(
    ensemble: pd.DataFrame,
    reserved_member: Optional[int] = None,
) -> List[Tuple[str, int]]:
    """
    Find members that stop before the end of their site's ensemble.

    Every non-reserved member must be present on each date from its first
    appearance to the site's last date. Returns the offending (site, member)
    pairs; an empty list means the ensemble is continuous.
    """
    usable = forecast_members(ensemble, reserved_member)
    broken = []
    for site_id, site_df in usable.groupby("site_id"):
        site_dates = site_df["datetime"].drop_duplicates().sort_values()
        for member, member_df in site_df.groupby("parameter"):
            first = member_df["datetime"].min()
            expected = set(site_dates[site_dates >= first])
            if expected - set(member_df["datetime"]):
                broken.append((site_id, int(member)))
    return broken
