"""
Aquatics Water-Temperature Forecasting
======================================

Daily ensemble forecast of water temperature for the aquatic sites of the
ecological forecasting challenge:

- ForecastEngine: end-to-end pipeline (drivers -> ensemble -> per-site TSLM -> EFI file)
- aggregate_daily_drivers: sub-daily NOAA records to daily Celsius means
- assemble_weather_ensemble: gap-fill + forecast weather ensemble per site
- fit_site_model / generate_site_forecast: lagged regression and bootstrap ensemble
- to_efi_standard: 8-column submission standard
"""

from .driver_aggregator import aggregate_daily_drivers
from .ensemble_assembler import assemble_weather_ensemble, compute_forecast_starts
from .model_fitter import ModelFitError, SiteModel, build_site_series, fit_site_model
from .forecast_generator import generate_site_forecast
from .standardizer import ForecastSchemaError, to_efi_standard, write_forecast
from .forecast_engine import ForecastEngine

__all__ = [
    'ForecastEngine',
    'aggregate_daily_drivers',
    'assemble_weather_ensemble',
    'compute_forecast_starts',
    'build_site_series',
    'fit_site_model',
    'generate_site_forecast',
    'to_efi_standard',
    'write_forecast',
    'SiteModel',
    'ModelFitError',
    'ForecastSchemaError',
]
