"""
Tests for feed loading, caching and submission, using local files only.
"""

import os

import pandas as pd
import pyarrow as pa
import pyarrow.fs as pafs
import pyarrow.parquet as pq
import pytest
import requests

import config
from aquatics_forecast import data_sources
from aquatics_forecast.data_sources import (
    DataFetchError,
    cache_path,
    load_noaa_future,
    load_noaa_past,
    load_site_ids,
    load_targets,
)
from aquatics_forecast.standardizer import to_efi_standard, write_forecast
from aquatics_forecast.submission import SubmissionError, submit

from conftest import TODAY


class FailingSession:
    def get(self, url, **kwargs):
        raise requests.ConnectionError("connection refused")


def _write_parquet(df, directory):
    os.makedirs(directory, exist_ok=True)
    pq.write_table(pa.Table.from_pandas(df, preserve_index=False), os.path.join(directory, "part-0.parquet"))


@pytest.fixture
def cache_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "CACHE_DIR", str(tmp_path / "cache"))
    return tmp_path / "cache"


@pytest.fixture
def targets_csv(tmp_path, targets):
    path = tmp_path / "aquatics-targets.csv.gz"
    targets.to_csv(path, index=False)
    return str(path)


class TestLoadTargets:

    def test_reads_local_csv(self, targets_csv, targets):
        loaded = load_targets(url=targets_csv, use_cache=False)
        assert list(loaded.columns) == ["datetime", "site_id", "variable", "observation"]
        assert len(loaded) == len(targets)
        assert pd.api.types.is_datetime64_any_dtype(loaded["datetime"])

    def test_cached_copy_reused(self, targets_csv, cache_dir):
        first = load_targets(url=targets_csv, cache_key="2024-05-01")
        assert os.path.exists(cache_path("targets", "2024-05-01"))
        os.remove(targets_csv)
        second = load_targets(url=targets_csv, cache_key="2024-05-01")
        pd.testing.assert_frame_equal(first, second, check_dtype=False)

    def test_network_failure_raises(self):
        with pytest.raises(DataFetchError, match="Failed to download"):
            load_targets(url="https://example.invalid/targets.csv.gz", use_cache=False, session=FailingSession())

    def test_missing_columns_raise(self, tmp_path):
        path = tmp_path / "bad.csv"
        pd.DataFrame({"datetime": ["2024-01-01"], "site_id": ["BARC"]}).to_csv(path, index=False)
        with pytest.raises(DataFetchError, match="missing columns"):
            load_targets(url=str(path), use_cache=False)


def test_load_site_ids_keeps_aquatic_sites(tmp_path):
    path = tmp_path / "sites.csv"
    pd.DataFrame({
        "field_site_id": ["BARC", "HARV", "CRAM"],
        "aquatics": [1, 0, 1],
    }).to_csv(path, index=False)
    assert load_site_ids(url=str(path)) == ["BARC", "CRAM"]


class TestNoaaFeeds:

    def test_past_filters_sites_and_start(self, tmp_path, noaa_past):
        root = tmp_path / "stage3"
        _write_parquet(noaa_past, str(root))
        past = load_noaa_past(
            ["BARC"], start_date="2024-04-01", source=str(root),
            filesystem=pafs.LocalFileSystem(), use_cache=False,
        )
        assert set(past["site_id"]) == {"BARC"}
        assert past["datetime"].min() == pd.Timestamp("2024-04-01", tz="UTC")
        assert list(past.columns) == data_sources.RAW_DRIVER_COLUMNS

    def test_future_reads_previous_day_issue(self, tmp_path, noaa_future):
        root = tmp_path / "stage2"
        _write_parquet(noaa_future, str(root / "reference_datetime=2024-04-30"))
        future = load_noaa_future(
            ["BARC", "CRAM"], TODAY, source=str(root),
            filesystem=pafs.LocalFileSystem(), use_cache=False,
        )
        assert future["parameter"].nunique() == 31
        assert future["datetime"].min() >= pd.Timestamp(TODAY, tz="UTC")

    def test_missing_issue_raises(self, tmp_path, noaa_future):
        root = tmp_path / "stage2"
        _write_parquet(noaa_future, str(root / "reference_datetime=2024-04-29"))
        with pytest.raises(DataFetchError):
            load_noaa_future(
                ["BARC"], TODAY, source=str(root),
                filesystem=pafs.LocalFileSystem(), use_cache=False,
            )

    def test_empty_selection_raises(self, tmp_path, noaa_past):
        root = tmp_path / "stage3"
        _write_parquet(noaa_past, str(root))
        with pytest.raises(DataFetchError, match="no rows"):
            load_noaa_past(
                ["ZZZZ"], source=str(root),
                filesystem=pafs.LocalFileSystem(), use_cache=False,
            )


class TestSubmit:

    @pytest.fixture
    def forecast_file(self, tmp_path):
        df = pd.DataFrame({
            "site_id": "BARC",
            "datetime": pd.to_datetime(["2024-05-02", "2024-05-02"]),
            "parameter": [1, 2],
            "variable": "temperature",
            "prediction": [12.0, 12.5],
        })
        return write_forecast(to_efi_standard(df), output_dir=str(tmp_path / "out"))

    def test_copies_to_bucket(self, tmp_path, forecast_file):
        bucket = tmp_path / "bucket"
        bucket.mkdir()
        destination = submit(forecast_file, bucket=str(bucket), filesystem=pafs.LocalFileSystem())
        assert destination.endswith("aquatics-2024-05-01-fTSLM_lag.csv.gz")
        assert os.path.exists(destination)

    def test_upload_failure_wrapped(self, tmp_path, forecast_file):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(SubmissionError):
            submit(forecast_file, bucket=str(blocker / "bucket"), filesystem=pafs.LocalFileSystem())
