"""Configuration management for cuentas-publicas.

This module centralizes file-system paths, environment variables, and the
tunable constants used by the ingestion pipeline (HTTP retry policy, validation
tolerance, dimensional-cube lookback, per-source URLs).

Configuration file
------------------
``config/config.json`` holds the shared settings:

* ``http``: ``max_retries``, ``timeout_ms`` and ``backoff_base_ms``
* ``validation``: ``tolerance_pct`` and ``floor`` for component-sum checks
* ``cube``: ``lookback_years`` for most-recent-available lookups
* ``sources``: URL tables keyed by source name

Environment variables
---------------------
``DATA_DIR`` and ``LOGS_DIR`` override the default directories. Directories
are created eagerly on import so downstream callers can rely on their existence.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, cast

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_DIR = Path(os.getenv("CONFIG_DIR", PROJECT_ROOT / "config"))
DATA_DIR = Path(os.getenv("DATA_DIR", PROJECT_ROOT / "data"))
LOGS_DIR = Path(os.getenv("LOGS_DIR", PROJECT_ROOT / "logs"))

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)

# Defaults used when config.json omits a key
DEFAULT_HTTP_SETTINGS: dict[str, int] = {
    "max_retries": 2,
    "timeout_ms": 30000,
    "backoff_base_ms": 1000,
}
DEFAULT_TOLERANCE_PCT = 0.01
DEFAULT_TOLERANCE_FLOOR = 1.0
DEFAULT_CUBE_LOOKBACK_YEARS = 3


def get_config() -> dict[str, Any]:
    """Load the primary project configuration.

    Returns
    -------
    dict[str, Any]
        Parsed contents of ``config/config.json``.

    Raises
    ------
    FileNotFoundError
        If ``config/config.json`` is missing.
    json.JSONDecodeError
        If the file exists but is not valid JSON.
    """
    config_path = CONFIG_DIR / "config.json"
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with Path(config_path).open(encoding="utf-8") as f:
        return json.load(f)  # type: ignore[no-any-return]


def setup_logging(name: str = "cuentas_publicas") -> logging.Logger:
    """Configure a console+file logger if not already present.

    Parameters
    ----------
    name : str, optional
        Logger namespace; reused to avoid duplicate handlers.

    Returns
    -------
    logging.Logger
        Logger with INFO-level console handler and DEBUG-level file handler
        under ``LOGS_DIR``.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(logging.DEBUG)

        # Console handler
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_format = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
        console_handler.setFormatter(console_format)
        logger.addHandler(console_handler)

        # File handler
        log_filename = f"{datetime.now(UTC).strftime('%Y-%m-%d')}_run.log"
        file_handler = logging.FileHandler(LOGS_DIR / log_filename)
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)

    return logger


# =============================================================================
# Section Accessors
# =============================================================================


def get_http_settings() -> dict[str, int]:
    """Return the retry policy for the HTTP client.

    Returns
    -------
    dict[str, int]
        ``max_retries``, ``timeout_ms`` and ``backoff_base_ms`` merged over
        :data:`DEFAULT_HTTP_SETTINGS`.
    """
    config = get_config()
    return {**DEFAULT_HTTP_SETTINGS, **config.get("http", {})}


def get_validation_tolerance() -> tuple[float, float]:
    """Return ``(tolerance_pct, floor)`` for component-sum validation."""
    validation = get_config().get("validation", {})
    return (
        float(validation.get("tolerance_pct", DEFAULT_TOLERANCE_PCT)),
        float(validation.get("floor", DEFAULT_TOLERANCE_FLOOR)),
    )


def get_cube_lookback_years() -> int:
    """Return how many years before the newest period a cube lookup may reach."""
    cube = get_config().get("cube", {})
    return cast("int", cube.get("lookback_years", DEFAULT_CUBE_LOOKBACK_YEARS))


def get_source_urls(source: str) -> dict[str, str]:
    """Return the URL table configured for one source.

    Parameters
    ----------
    source : str
        Source key such as ``"bde"`` or ``"aeat"``.

    Returns
    -------
    dict[str, str]
        Mapping from logical resource name to URL.

    Raises
    ------
    KeyError
        If the source has no entry under ``sources``.
    """
    sources = get_config().get("sources", {})
    if source not in sources:
        msg = f"No URLs configured for source: {source}"
        raise KeyError(msg)
    return cast("dict[str, str]", sources[source])
