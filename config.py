"""Centralized configuration for environment variables and external services.

This module is the single source of truth for configuration used across the
application. Import constants from here rather than calling os.getenv directly
in multiple places.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Final

from dotenv import load_dotenv

# Load environment variables from .env if present
load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# --- Logging ---
LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO").upper()


# --- Job queue ---
JOB_MAX_WORKERS: Final[int] = _int_env("JOB_MAX_WORKERS", 2)
JOB_POLL_INTERVAL_SECONDS: Final[float] = _float_env("JOB_POLL_INTERVAL_SECONDS", 5.0)
JOB_TIMEOUT_SECONDS: Final[float] = _float_env("JOB_TIMEOUT_SECONDS", 300.0)
JOB_RETRY_ATTEMPTS: Final[int] = _int_env("JOB_RETRY_ATTEMPTS", 3)
JOB_RETRY_DELAY_SECONDS: Final[float] = _float_env("JOB_RETRY_DELAY_SECONDS", 60.0)


# --- Uploads and exports ---
UPLOAD_STAGING_ROOT: Final[Path] = Path(
    os.getenv("UPLOAD_STAGING_ROOT", "cache/uploads"),
)
EXPORT_ROOT: Final[Path] = Path(os.getenv("EXPORT_ROOT", "cache/exports"))
EXPORT_RETENTION_COUNT: Final[int] = _int_env("EXPORT_RETENTION_COUNT", 5)
EXPORT_URL_TTL_HOURS: Final[int] = _int_env("EXPORT_URL_TTL_HOURS", 24 * 7)
EXPORT_SIGNING_SECRET: Final[str] = os.getenv(
    "EXPORT_SIGNING_SECRET",
    "change-me-in-production",
)
EXPORT_BASE_URL: Final[str] = os.getenv(
    "EXPORT_BASE_URL",
    "http://localhost:8080/exports",
).rstrip("/")


# --- Nominatim Configuration ---
def get_nominatim_base_url() -> str:
    return os.getenv(
        "NOMINATIM_BASE_URL",
        "https://nominatim.openstreetmap.org",
    ).rstrip("/")


def get_nominatim_search_url() -> str:
    return f"{get_nominatim_base_url()}/search"


def get_nominatim_reverse_url() -> str:
    return f"{get_nominatim_base_url()}/reverse"


def get_nominatim_user_agent() -> str:
    return os.getenv("NOMINATIM_USER_AGENT", "Wayfarer/1.0")


def get_nominatim_rate_limit() -> float:
    """Requests per second allowed against the configured Nominatim host."""
    return _float_env("NOMINATIM_RATE_LIMIT_PER_SECOND", 1.0)


__all__ = [
    "EXPORT_BASE_URL",
    "EXPORT_RETENTION_COUNT",
    "EXPORT_ROOT",
    "EXPORT_SIGNING_SECRET",
    "EXPORT_URL_TTL_HOURS",
    "JOB_MAX_WORKERS",
    "JOB_POLL_INTERVAL_SECONDS",
    "JOB_RETRY_ATTEMPTS",
    "JOB_RETRY_DELAY_SECONDS",
    "JOB_TIMEOUT_SECONDS",
    "LOG_LEVEL",
    "UPLOAD_STAGING_ROOT",
    "get_nominatim_base_url",
    "get_nominatim_rate_limit",
    "get_nominatim_reverse_url",
    "get_nominatim_search_url",
    "get_nominatim_user_agent",
]
