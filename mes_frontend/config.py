"""Configuration objects for the Flask application."""
from __future__ import annotations

import os
from pathlib import Path


def _int_from_env(name: str, default: int) -> int:
    """Return an integer value from ``name`` or ``default`` when missing/invalid."""

    raw_value = os.environ.get(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _bool_from_env(name: str, default: bool) -> bool:
    """Return a boolean flag from ``name`` or ``default`` when missing."""

    raw_value = os.environ.get(name)
    if not raw_value:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Base configuration."""

    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    MES_API_BASE_URL = os.environ.get("MES_API_BASE_URL", "http://localhost:3000/api")
    MES_API_TIMEOUT = _int_from_env("MES_API_TIMEOUT", 10)
    MES_STORAGE_PATH = os.environ.get("MES_STORAGE_PATH") or str(
        Path(os.environ.get("FLASK_INSTANCE_PATH", "instance")).absolute()
        / "local_storage.json"
    )
    DASHBOARD_REFRESH_SECONDS = _int_from_env("DASHBOARD_REFRESH_SECONDS", 5 * 60)
    SESSION_TICK_SECONDS = _int_from_env("SESSION_TICK_SECONDS", 1)
    SESSION_RESET_ON_VERIFY_ERROR = _bool_from_env("SESSION_RESET_ON_VERIFY_ERROR", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


class TestingConfig(Config):
    """Configuration used by the test-suite."""

    TESTING = True
    SECRET_KEY = "testing"
    MES_API_BASE_URL = "http://mes.test/api"
