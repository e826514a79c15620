"""
TSLM-lag Forecast Engine
========================

Runs the full daily pipeline:

    NOAA drivers -> daily means -> weather ensemble
    targets + drivers -> per-site lagged regression -> bootstrap ensemble
    -> EFI standard frame -> submission file

The per-site step is a pure map over sites (fit + generate) followed by a
single concatenation, so it can run under joblib without shared state.
Every site draws from its own seeded generator, which makes serial and
parallel runs identical.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

import pandas as pd
from joblib import Parallel, delayed
from tqdm import tqdm

import config
from . import data_sources
from .driver_aggregator import aggregate_daily_drivers
from .ensemble_assembler import (
    assemble_weather_ensemble,
    check_member_continuity,
    compute_forecast_starts,
)
from .forecast_generator import generate_site_forecast, site_random_state
from .model_fitter import ModelFitError, build_site_series, fit_site_model
from .standardizer import to_efi_standard, validate_output_schema, write_forecast
from .logging_config import get_logger

logger = get_logger(__name__)


def _forecast_single_site(
    site_id: str,
    site_targets: pd.DataFrame,
    site_past: pd.DataFrame,
    site_ensemble: pd.DataFrame,
    today: pd.Timestamp,
    random_seed: int,
    n_reps: int,
) -> Tuple[str, Optional[pd.DataFrame], Optional[str]]:
    """Fit and forecast one site; returns (site_id, forecast or None, skip reason)."""
    series = build_site_series(site_targets, site_past, site_id, today)
    try:
        model = fit_site_model(series, site_id)
    except ModelFitError as exc:
        return site_id, None, str(exc)

    if site_ensemble.empty:
        return site_id, None, "no weather ensemble rows"

    history = site_past.set_index("datetime")[config.DRIVER_VARIABLE]
    forecast = generate_site_forecast(
        model,
        site_ensemble,
        today,
        n_reps=n_reps,
        rng=site_random_state(random_seed, site_id),
        history=history,
    )
    if forecast.empty:
        return site_id, None, "no forecast dates after today"
    return site_id, forecast, None


class ForecastEngine:
    """
    Daily ensemble water-temperature forecast for all aquatic sites.

    Parameters
    ----------
    today : date-like, optional
        Processing date; forecasts are kept for dates strictly after it.
    random_seed : int, optional
        Base seed for the residual bootstrap (``config.RANDOM_SEED``).
    n_jobs : int, optional
        joblib workers for the per-site map (``config.N_JOBS``).
    """

    def __init__(
        self,
        today=None,
        random_seed: Optional[int] = None,
        n_jobs: Optional[int] = None,
        enable_parallel: Optional[bool] = None,
        n_reps: Optional[int] = None,
        use_cache: bool = True,
    ):
        if today is None:
            today = pd.Timestamp.now(tz="UTC").tz_localize(None)
        self.today = pd.Timestamp(today).normalize()
        self.random_seed = config.RANDOM_SEED if random_seed is None else int(random_seed)
        self.n_jobs = config.N_JOBS if n_jobs is None else n_jobs
        self.enable_parallel = (
            getattr(config, "ENABLE_PARALLEL", True) if enable_parallel is None else enable_parallel
        )
        self.n_reps = n_reps or config.N_BOOTSTRAP_REPS
        self.use_cache = use_cache

        self.weather_ensemble: Optional[pd.DataFrame] = None
        self.results_df: Optional[pd.DataFrame] = None
        self.skipped_sites: dict = {}

        logger.info(
            "ForecastEngine: today=%s, seed=%d, reps=%d, n_jobs=%s",
            self.today.date(), self.random_seed, self.n_reps,
            self.n_jobs if self.enable_parallel else "serial",
        )

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def load_inputs(self) -> dict:
        """Fetch every remote feed; any failure aborts the run."""
        targets = data_sources.load_targets(use_cache=self.use_cache, cache_key=f"{self.today:%Y-%m-%d}")
        site_ids = data_sources.load_site_ids()
        noaa_past = data_sources.load_noaa_past(
            site_ids,
            start_date=config.HISTORICAL_START_DATE,
            use_cache=self.use_cache,
            cache_key=f"{self.today:%Y-%m-%d}",
        )
        noaa_future = data_sources.load_noaa_future(site_ids, self.today, use_cache=self.use_cache)
        return {
            "targets": targets,
            "site_ids": site_ids,
            "noaa_past": noaa_past,
            "noaa_future": noaa_future,
        }

    def prepare_drivers(
        self,
        site_ids: Iterable[str],
        noaa_past: pd.DataFrame,
        noaa_future: pd.DataFrame,
    ) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """Daily Celsius means for the historical and forecast feeds."""
        site_ids = list(site_ids)
        past_daily = aggregate_daily_drivers(
            noaa_past, start_date=config.HISTORICAL_START_DATE, site_ids=site_ids,
        )
        future_daily = aggregate_daily_drivers(
            noaa_future, start_date=self.today, by_member=True, site_ids=site_ids,
        )
        return past_daily, future_daily

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def run(
        self,
        targets: pd.DataFrame,
        site_ids: Iterable[str],
        noaa_past: pd.DataFrame,
        noaa_future: pd.DataFrame,
    ) -> pd.DataFrame:
        """
        Produce the standardized forecast for every site with observations.

        Returns the EFI standard frame; raises ValueError when no site
        produced a forecast.
        """
        site_ids = list(dict.fromkeys(site_ids))
        targets = targets[targets["variable"] == config.TARGET_VARIABLE]

        past_daily, future_daily = self.prepare_drivers(site_ids, noaa_past, noaa_future)

        logger.info("Creating weather ensembles")
        forecast_starts = compute_forecast_starts(targets)
        forecast_starts = forecast_starts[forecast_starts["site_id"].isin(site_ids)]
        ensemble = assemble_weather_ensemble(past_daily, future_daily, forecast_starts)
        self.weather_ensemble = ensemble

        for site_id, member in check_member_continuity(ensemble):
            logger.warning("Weather member %d for %s does not span the full horizon", member, site_id)

        logger.info("Starting TSLM model fitting and forecast generation for %d sites", len(site_ids))
        tasks = [
            (
                site_id,
                targets[targets["site_id"] == site_id],
                past_daily[past_daily["site_id"] == site_id],
                ensemble[ensemble["site_id"] == site_id],
            )
            for site_id in site_ids
        ]

        if self.enable_parallel and len(tasks) > 1:
            results = Parallel(n_jobs=self.n_jobs)(
                delayed(_forecast_single_site)(
                    *task, self.today, self.random_seed, self.n_reps
                )
                for task in tqdm(tasks, desc="Sites", unit="site")
            )
        else:
            results = [
                _forecast_single_site(*task, self.today, self.random_seed, self.n_reps)
                for task in tqdm(tasks, desc="Sites", unit="site")
            ]

        forecasts: List[pd.DataFrame] = []
        self.skipped_sites = {}
        for site_id, forecast, reason in results:
            if forecast is None:
                self.skipped_sites[site_id] = reason
                logger.warning("No forecast generated for %s: %s", site_id, reason)
                continue
            forecasts.append(forecast)
            logger.info("TSLM forecast for %s complete", site_id)

        if not forecasts:
            raise ValueError("No site produced a forecast")

        combined = pd.concat(forecasts, ignore_index=True)
        logger.info("Converting to EFI standard")
        standardized = to_efi_standard(combined, model_id=config.MODEL_ID)
        validate_output_schema(standardized)

        logger.info(
            "Forecast complete: %d rows, %d sites forecast, %d skipped",
            len(standardized), len(forecasts), len(self.skipped_sites),
        )
        self.results_df = standardized
        return standardized

    def run_from_sources(self) -> pd.DataFrame:
        """Fetch remote inputs and run the pipeline."""
        inputs = self.load_inputs()
        return self.run(**inputs)

    def write(self, forecast: Optional[pd.DataFrame] = None, output_dir: Optional[str] = None) -> str:
        forecast = self.results_df if forecast is None else forecast
        if forecast is None:
            raise ValueError("No forecast to write; call run() first")
        return write_forecast(forecast, output_dir=output_dir)
