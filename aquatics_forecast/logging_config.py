"""
Logging Configuration
=====================

Central logger setup for the forecasting pipeline. Modules obtain their
logger with ``get_logger(__name__)``; entry points call ``setup_logging``
once before the run starts.
"""

import logging
import os
from datetime import datetime

import config

LOGGER_NAMESPACE = "aquatics_forecast"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def setup_logging(log_level=None, enable_file_logging=False, log_dir=None):
    """
    Configure console (and optionally file) handlers for the package logger.

    Repeated calls only update the level; handlers are attached once.
    """
    global _configured

    level = getattr(logging, str(log_level or config.LOG_LEVEL).upper(), logging.INFO)
    root = logging.getLogger(LOGGER_NAMESPACE)
    root.setLevel(level)

    if _configured:
        return root

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if enable_file_logging:
        log_dir = log_dir or getattr(config, "LOG_DIR", "./logs")
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"forecast_{datetime.now():%Y%m%d}.log")
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    _configured = True
    root.debug("Logging configured at level %s", logging.getLevelName(level))
    return root


def get_logger(name):
    """Return a logger nested under the package namespace."""
    if name == LOGGER_NAMESPACE or name.startswith(LOGGER_NAMESPACE + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
