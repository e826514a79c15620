#!/usr/bin/env python3
"""
Aquatics TSLM-lag Daily Forecast

Fetches targets and NOAA drivers, fits one lagged regression per site,
generates the bootstrap ensemble forecast, writes the EFI standard file and
validates it. Pass --submit to upload the file to the challenge bucket.
"""

import argparse
import sys

import config
from aquatics_forecast.forecast_engine import ForecastEngine
from aquatics_forecast.logging_config import setup_logging, get_logger
from aquatics_forecast.submission import forecast_output_validator, submit

logger = get_logger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Generate the daily TSLM-lag water temperature forecast")
    parser.add_argument("--date", default=None, help="Processing date (YYYY-MM-DD); defaults to today (UTC)")
    parser.add_argument("--seed", type=int, default=config.RANDOM_SEED,
                        help="Seed for residual bootstrap resampling")
    parser.add_argument("--n-jobs", dest="n_jobs", type=int, default=config.N_JOBS)
    parser.add_argument("--serial", action="store_true", help="Run the per-site loop without joblib")
    parser.add_argument("--output-dir", dest="output_dir", default=config.OUTPUT_DIR)
    parser.add_argument("--no-cache", action="store_true", help="Ignore cached feed downloads")
    parser.add_argument("--submit", action="store_true", help="Upload the validated file")
    parser.add_argument("--log-level", dest="log_level", default=config.LOG_LEVEL)
    args = parser.parse_args(argv)

    setup_logging(log_level=args.log_level, enable_file_logging=True)

    engine = ForecastEngine(
        today=args.date,
        random_seed=args.seed,
        n_jobs=args.n_jobs,
        enable_parallel=not args.serial,
        use_cache=not args.no_cache,
    )
    forecast = engine.run_from_sources()
    forecast_file = engine.write(forecast, output_dir=args.output_dir)
    forecast_output_validator(forecast_file)
    logger.info("Recorded bootstrap seed %d for %s", engine.random_seed, forecast_file)

    if engine.skipped_sites:
        logger.info("Skipped sites: %s", ", ".join(sorted(engine.skipped_sites)))

    if args.submit:
        submit(forecast_file)

    print(forecast_file)
    return 0


if __name__ == "__main__":
    sys.exit(main())
