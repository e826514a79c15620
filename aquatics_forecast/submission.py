"""
Forecast validation and submission to the challenge bucket.
"""

from __future__ import annotations

import os
import re
from typing import Optional

import pandas as pd
import pyarrow.fs as pafs

import config
from .standardizer import ForecastSchemaError, validate_output_schema
from .logging_config import get_logger

logger = get_logger(__name__)

FILENAME_PATTERN = re.compile(
    r"^(?P<theme>[a-z_]+)-(?P<reference>\d{4}-\d{2}-\d{2})-(?P<model_id>.+)\.csv(\.gz)?$"
)


class SubmissionError(RuntimeError):
    """Upload to the challenge bucket failed."""


def forecast_output_validator(path: str) -> bool:
    """
    Check a written forecast file against the submission contract.

    Raises ForecastSchemaError describing the first problem found.
    """
    name = os.path.basename(path)
    match = FILENAME_PATTERN.match(name)
    if match is None:
        raise ForecastSchemaError(f"File name does not follow <theme>-<date>-<model_id>.csv.gz: {name}")

    df = pd.read_csv(path)
    validate_output_schema(df)
    if df.empty:
        raise ForecastSchemaError(f"{name} contains no forecast rows")

    if set(df["family"].unique()) != {config.FORECAST_FAMILY}:
        raise ForecastSchemaError(f"Unexpected family values: {sorted(df['family'].unique())}")

    if not pd.api.types.is_numeric_dtype(df["prediction"]) or df["prediction"].isna().any():
        raise ForecastSchemaError("prediction column must be numeric with no missing values")

    for col in ("datetime", "site_id", "parameter", "variable", "model_id"):
        if df[col].isna().any():
            raise ForecastSchemaError(f"Column {col} has missing values")

    references = df["reference_datetime"].astype(str).unique()
    if len(references) != 1 or references[0] != match.group("reference"):
        raise ForecastSchemaError(
            f"reference_datetime {list(references)} does not match file name date {match.group('reference')}"
        )

    if (df["model_id"].astype(str) != match.group("model_id")).any():
        raise ForecastSchemaError("model_id column does not match file name")

    duplicated = df.duplicated(["site_id", "datetime", "variable", "parameter"])
    if duplicated.any():
        raise ForecastSchemaError(f"{int(duplicated.sum())} duplicated site/datetime/parameter rows")

    logger.info("Forecast file %s passed validation (%d rows)", name, len(df))
    return True


def submit(
    path: str,
    bucket: Optional[str] = None,
    filesystem: Optional[pafs.FileSystem] = None,
) -> str:
    """Upload a validated forecast file; returns the destination key."""
    forecast_output_validator(path)
    bucket = bucket or config.SUBMISSION_BUCKET
    filesystem = filesystem or pafs.S3FileSystem(
        endpoint_override=config.NOAA_ENDPOINT, anonymous=True, scheme="https",
    )
    destination = f"{bucket}/{os.path.basename(path)}"
    try:
        pafs.copy_files(
            os.path.abspath(path),
            destination,
            source_filesystem=pafs.LocalFileSystem(),
            destination_filesystem=filesystem,
        )
    except OSError as e:
        raise SubmissionError(f"Failed to submit {path}: {e}") from e
    logger.info("Submitted %s to %s", path, destination)
    return destination
