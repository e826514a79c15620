"""
Remote Data Sources
===================

Fetches the challenge targets, the aquatic site list and the NOAA GEFS
air-temperature drivers. Downloads are retried and cached as parquet under
``config.CACHE_DIR``. Any failure or empty result raises DataFetchError so a
run never continues on silently missing drivers.
"""

from __future__ import annotations

import os
import tempfile
from datetime import date
from typing import Iterable, List, Optional

import pandas as pd
import pyarrow.dataset as ds
import pyarrow.fs as pafs
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

import config
from .logging_config import get_logger

logger = get_logger(__name__)

RAW_DRIVER_COLUMNS = ["datetime", "site_id", "variable", "prediction"]


class DataFetchError(RuntimeError):
    """A remote feed could not be retrieved or returned no data."""


def build_session(retries: Optional[int] = None, backoff: Optional[float] = None) -> requests.Session:
    """HTTP session that retries transient failures with exponential backoff."""
    retry = Retry(
        total=retries if retries is not None else config.HTTP_RETRIES,
        backoff_factor=backoff if backoff is not None else config.HTTP_BACKOFF,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET", "HEAD"),
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def download_file(url: str, filename: str, session: Optional[requests.Session] = None) -> str:
    """Download file with retries, raising DataFetchError on failure."""
    session = session or build_session()
    logger.info("Downloading %s", url)
    try:
        response = session.get(url, timeout=config.HTTP_TIMEOUT, stream=True)
        response.raise_for_status()
        with open(filename, "wb") as f:
            downloaded = 0
            for chunk in response.iter_content(chunk_size=8192):
                f.write(chunk)
                downloaded += len(chunk)
    except requests.RequestException as e:
        logger.error("Failed to download %s: %s", url, e)
        raise DataFetchError(f"Failed to download {url}: {e}") from e

    logger.info("Downloaded %.2f MB to %s", downloaded / (1024 * 1024), filename)
    return filename


def cache_path(feed: str, key: str, cache_dir: Optional[str] = None) -> str:
    cache_dir = cache_dir or config.CACHE_DIR
    return os.path.join(cache_dir, feed, f"{key}.parquet")


def _read_cached(path: str) -> Optional[pd.DataFrame]:
    if os.path.exists(path):
        logger.info("Using cached feed %s", path)
        return pd.read_parquet(path, engine="pyarrow")
    return None


def _write_cache(df: pd.DataFrame, path: str) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    df.to_parquet(path, index=False, engine="pyarrow")


def _require_rows(df: pd.DataFrame, feed: str) -> pd.DataFrame:
    if df is None or df.empty:
        raise DataFetchError(f"{feed} returned no rows")
    return df


def _read_remote_csv(url: str, session: Optional[requests.Session] = None, **read_kwargs) -> pd.DataFrame:
    """Read a CSV from a local path or URL (downloaded through the retrying session)."""
    if os.path.exists(url):
        return pd.read_csv(url, **read_kwargs)

    suffix = ".csv.gz" if url.endswith(".gz") else ".csv"
    with tempfile.TemporaryDirectory() as tmp_dir:
        local = download_file(url, os.path.join(tmp_dir, f"download{suffix}"), session=session)
        try:
            return pd.read_csv(local, **read_kwargs)
        except (ValueError, OSError) as e:
            raise DataFetchError(f"Could not parse {url}: {e}") from e


def load_targets(
    url: Optional[str] = None,
    use_cache: bool = True,
    cache_key: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> pd.DataFrame:
    """
    Load target observations.

    Returns: DataFrame with columns [datetime, site_id, variable, observation]
    """
    url = url or config.TARGETS_URL
    path = cache_path("targets", cache_key or date.today().isoformat())
    targets = _read_cached(path) if use_cache else None

    if targets is None:
        targets = _read_remote_csv(url, session=session)
        missing = [c for c in ("datetime", "site_id", "variable", "observation") if c not in targets.columns]
        if missing:
            raise DataFetchError(f"Targets feed missing columns: {missing}")
        targets = targets[["datetime", "site_id", "variable", "observation"]].copy()
        targets["datetime"] = pd.to_datetime(targets["datetime"])
        targets["observation"] = pd.to_numeric(targets["observation"], errors="coerce")
        _require_rows(targets, "Targets feed")
        if use_cache:
            _write_cache(targets, path)

    logger.info(
        "Targets loaded: %d records across %d sites",
        len(targets),
        targets["site_id"].nunique(),
    )
    return targets


def load_site_ids(url: Optional[str] = None, session: Optional[requests.Session] = None) -> List[str]:
    """Site identifiers flagged for the aquatics theme in the site metadata."""
    url = url or config.SITE_METADATA_URL
    sites = _read_remote_csv(url, session=session)
    if "field_site_id" not in sites.columns or "aquatics" not in sites.columns:
        raise DataFetchError("Site metadata missing field_site_id/aquatics columns")
    site_ids = sites.loc[sites["aquatics"] == 1, "field_site_id"].dropna().astype(str).tolist()
    if not site_ids:
        raise DataFetchError("Site metadata lists no aquatic sites")
    logger.info("Loaded %d aquatic sites", len(site_ids))
    return site_ids


def noaa_filesystem(endpoint: Optional[str] = None) -> pafs.FileSystem:
    """Anonymous S3 filesystem on the challenge's data endpoint."""
    return pafs.S3FileSystem(
        endpoint_override=endpoint or config.NOAA_ENDPOINT,
        anonymous=True,
        scheme="https",
    )


def _collect_drivers(
    source: str,
    site_ids: Iterable[str],
    columns: List[str],
    filesystem: Optional[pafs.FileSystem],
    variable: str,
) -> pd.DataFrame:
    """Open a NOAA parquet dataset and pull only the requested sites/variable."""
    filesystem = filesystem or noaa_filesystem()
    site_ids = list(site_ids)
    try:
        dataset = ds.dataset(source, filesystem=filesystem, format="parquet", partitioning="hive")
        predicate = ds.field("site_id").isin(site_ids) & (ds.field("variable") == variable)
        table = dataset.to_table(filter=predicate, columns=columns)
    except (OSError, ValueError) as e:
        raise DataFetchError(f"Failed to read NOAA dataset {source}: {e}") from e
    return table.to_pandas()


def load_noaa_past(
    site_ids: Iterable[str],
    start_date=None,
    source: Optional[str] = None,
    filesystem: Optional[pafs.FileSystem] = None,
    use_cache: bool = True,
    cache_key: Optional[str] = None,
) -> pd.DataFrame:
    """
    Historical (stage 3) sub-daily air temperature for the given sites.

    Returns: DataFrame [datetime, site_id, variable, prediction]
    """
    start_date = pd.Timestamp(start_date or config.HISTORICAL_START_DATE)
    path = cache_path("noaa_past", cache_key or date.today().isoformat())
    past = _read_cached(path) if use_cache else None

    if past is None:
        source = source or config.NOAA_STAGE3_PATH
        logger.info("Collecting NOAA stage 3 drivers from %s", source)
        past = _collect_drivers(source, site_ids, RAW_DRIVER_COLUMNS, filesystem, config.DRIVER_VARIABLE)
        past["datetime"] = pd.to_datetime(past["datetime"], utc=True)
        past = past[past["datetime"] >= start_date.tz_localize("UTC")].reset_index(drop=True)
        _require_rows(past, "NOAA stage 3 feed")
        if use_cache:
            _write_cache(past, path)

    logger.info("NOAA past drivers: %d records", len(past))
    return past


def load_noaa_future(
    site_ids: Iterable[str],
    forecast_date,
    source: Optional[str] = None,
    filesystem: Optional[pafs.FileSystem] = None,
    use_cache: bool = True,
) -> pd.DataFrame:
    """
    Forecast (stage 2) ensemble air temperature issued the day before
    ``forecast_date``, restricted to datetimes on or after ``forecast_date``.

    The new GEFS cycle is published around 05:00 UTC the following day, so
    yesterday's issue is the latest complete one.

    Returns: DataFrame [datetime, site_id, variable, prediction, parameter]
    """
    forecast_date = pd.Timestamp(forecast_date).normalize()
    noaa_date = forecast_date - pd.Timedelta(days=1)
    path = cache_path("noaa_future", f"{noaa_date:%Y-%m-%d}")
    future = _read_cached(path) if use_cache else None

    if future is None:
        source = source or config.NOAA_STAGE2_PATH
        issue_source = f"{source.rstrip('/')}/reference_datetime={noaa_date:%Y-%m-%d}"
        logger.info("Collecting NOAA stage 2 drivers from %s", issue_source)
        future = _collect_drivers(
            issue_source, site_ids, RAW_DRIVER_COLUMNS + ["parameter"], filesystem, config.DRIVER_VARIABLE,
        )
        future["datetime"] = pd.to_datetime(future["datetime"], utc=True)
        future = future[future["datetime"] >= forecast_date.tz_localize("UTC")].reset_index(drop=True)
        _require_rows(future, f"NOAA stage 2 feed for {noaa_date:%Y-%m-%d}")
        if use_cache:
            _write_cache(future, path)

    logger.info(
        "NOAA future drivers: %d records, %d members",
        len(future),
        future["parameter"].nunique(),
    )
    return future
