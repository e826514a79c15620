"""
EFI Standard Output
===================

Reshapes generated ensemble trajectories into the challenge's 8-column
forecast standard and writes the submission file.
"""

from __future__ import annotations

import os
from typing import Optional

import pandas as pd

import config
from .logging_config import get_logger

logger = get_logger(__name__)


class ForecastSchemaError(ValueError):
    """Output does not match the submission schema."""


def to_efi_standard(df: pd.DataFrame, model_id: Optional[str] = None) -> pd.DataFrame:
    """
    Convert generated forecasts to the EFI standard.

    ``reference_datetime`` is one day before the earliest forecast date in the
    whole frame and is shared by every row. Columns outside the standard are
    ignored; standard columns that are absent are left out rather than raised
    on, which ``validate_output_schema`` checks separately.
    """
    model_id = model_id or config.MODEL_ID
    out = df.copy()
    if "prediction" not in out.columns and ".sim" in out.columns:
        out = out.rename(columns={".sim": "prediction"})

    out["family"] = config.FORECAST_FAMILY
    out["model_id"] = model_id
    if "datetime" in out.columns and len(out):
        out["datetime"] = pd.to_datetime(out["datetime"])
        out["reference_datetime"] = out["datetime"].min() - pd.Timedelta(days=1)

    columns = [col for col in config.OUTPUT_COLUMNS if col in out.columns]
    sort_keys = [col for col in ("site_id", "datetime", "parameter") if col in columns]
    out = out[columns]
    if sort_keys:
        out = out.sort_values(sort_keys, kind="mergesort")
    return out.reset_index(drop=True)


def validate_output_schema(df: pd.DataFrame) -> bool:
    """Raise ForecastSchemaError unless every standard column is present."""
    missing = [col for col in config.OUTPUT_COLUMNS if col not in df.columns]
    if missing:
        raise ForecastSchemaError(f"Forecast output missing required columns: {missing}")
    return True


def forecast_filename(reference_datetime, model_id: Optional[str] = None, theme: Optional[str] = None) -> str:
    """Submission name: ``<theme>-<YYYY-MM-DD>-<model_id>.csv.gz``."""
    model_id = model_id or config.MODEL_ID
    theme = theme or config.THEME
    return f"{theme}-{pd.Timestamp(reference_datetime):%Y-%m-%d}-{model_id}.csv.gz"


def write_forecast(df: pd.DataFrame, output_dir: Optional[str] = None) -> str:
    """
    Validate and write a standardized forecast; returns the file path.

    The gzip header timestamp is pinned so identical forecasts produce
    identical bytes.
    """
    validate_output_schema(df)
    if df.empty:
        raise ForecastSchemaError("Refusing to write an empty forecast")

    output_dir = output_dir or config.OUTPUT_DIR
    os.makedirs(output_dir, exist_ok=True)

    reference = df["reference_datetime"].iloc[0]
    model_id = df["model_id"].iloc[0]
    path = os.path.join(output_dir, forecast_filename(reference, model_id))

    df[config.OUTPUT_COLUMNS].to_csv(
        path,
        index=False,
        date_format="%Y-%m-%d",
        compression={"method": "gzip", "mtime": 0},
    )
    logger.info("Wrote %d forecast rows to %s", len(df), path)
    return path
