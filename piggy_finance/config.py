"""Configuration management for the piggy bank tracker.

This module centralizes all configuration values including paths,
currency defaults, logging and environment variable overrides.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

# Base project root - assumes this file is in piggy_finance/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directory
DATA_DIR = Path(os.getenv("PIGGY_DATA_DIR", _PROJECT_ROOT / "data"))

# Database
DB_PATH = Path(
    os.getenv("PIGGY_DB_PATH", DATA_DIR / "piggy.db")
).resolve()

# Currency
SUPPORTED_CURRENCIES = {
    'INR': 'Indian Rupee (INR)',
    'USD': 'US Dollar (USD)',
    'EUR': 'Euro (EUR)',
}
DEFAULT_CURRENCY = os.getenv("PIGGY_CURRENCY", "INR").upper()

# Logging
LOG_LEVEL = os.getenv("PIGGY_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def ensure_data_directories() -> None:
    """Create the data directory if it doesn't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)


def get_db_path() -> str:
    """Get the database path as a string."""
    return str(DB_PATH)


def configure_logging(level: str | None = None) -> None:
    """Set up root logging once for scripts and the dashboard."""
    logging.basicConfig(level=(level or LOG_LEVEL), format=LOG_FORMAT)
