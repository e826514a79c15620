# Aquatics TSLM-lag Forecasting Configuration
# Settings for data sources, ensemble assembly, modeling and output

import os

# Data Sources

# Challenge target observations (all sites, all history)
TARGETS_URL = "https://data.ecoforecast.org/neon4cast-targets/aquatics/aquatics-targets.csv.gz"

# NEON field site metadata; sites with aquatics == 1 are forecast
SITE_METADATA_URL = "https://raw.githubusercontent.com/eco4cast/neon4cast-targets/main/NEON_Field_Site_Metadata_20220412.csv"

# NOAA GEFS driver datasets (anonymous S3-compatible endpoint)
NOAA_ENDPOINT = "data.ecoforecast.org"
# Stage 3: stacked historical trajectory, one deterministic series per site
NOAA_STAGE3_PATH = "neon4cast-drivers/noaa/gefs-v12/stage3/parquet"
# Stage 2: 31-member forecast ensemble, partitioned by issue date then site
NOAA_STAGE2_PATH = "neon4cast-drivers/noaa/gefs-v12/stage2/parquet/0"

# Submission bucket for the challenge
SUBMISSION_BUCKET = "neon4cast-submissions"

# HTTP behaviour for remote downloads
HTTP_TIMEOUT = 300
HTTP_RETRIES = 3
HTTP_BACKOFF = 2.0

# Local cache for downloaded feeds (parquet)
CACHE_DIR = os.getenv("AQUATICS_CACHE_DIR", "./cache")
OUTPUT_DIR = "./forecasts"

# Forecast Identity

THEME = "aquatics"
MODEL_ID = "fTSLM_lag"
TARGET_VARIABLE = "temperature"
DRIVER_VARIABLE = "air_temperature"

# Driver Processing

# Historical weather is only pulled from this date onward
HISTORICAL_START_DATE = "2017-01-01"

# NOAA air temperature arrives in Kelvin
KELVIN_OFFSET = 273.15

# Ensemble Configuration

# The deterministic gap-fill trajectory is replicated across this many members
GAP_FILL_MEMBERS = 31

# Member held out of the fitted/forecast path
RESERVED_MEMBER = 31

# Bootstrap residual replicates per weather member
N_BOOTSTRAP_REPS = 100

# parameter = rep + PARAMETER_STRIDE * (scenario - 1)
PARAMETER_STRIDE = 100

# Model Configuration

# Intercept + same-day slope + lag-1 slope
MIN_TRAINING_SAMPLES = 3
RANDOM_SEED = int(os.getenv("AQUATICS_RANDOM_SEED", "42"))

# Per-site map
ENABLE_PARALLEL = True
N_JOBS = int(os.getenv("AQUATICS_N_JOBS", "-1"))

# Output Schema

OUTPUT_COLUMNS = [
    "datetime",
    "reference_datetime",
    "site_id",
    "family",
    "parameter",
    "variable",
    "prediction",
    "model_id",
]

FORECAST_FAMILY = "ensemble"

# Logging
LOG_LEVEL = os.getenv("AQUATICS_LOG_LEVEL", "INFO")
LOG_DIR = "./logs"
