from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

ENV_PATH = Path(__file__).resolve().parents[3] / ".env"
load_dotenv(dotenv_path=ENV_PATH)

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def _positive_int_from_env(name: str, default: str) -> int:
    raw_value = os.getenv(name, default).strip()
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be greater than 0")
    return value


def get_database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if database_url and database_url.strip():
        return database_url.strip()
    raise RuntimeError("DATABASE_URL is required")


def get_api_prefix() -> str:
    prefix = os.getenv("API_PREFIX", "/api/v1").strip().rstrip("/")
    if prefix and not prefix.startswith("/"):
        raise RuntimeError("API_PREFIX must start with '/'")
    return prefix


def get_reservation_ttl_minutes() -> int:
    return _positive_int_from_env("RESERVATION_TTL_MINUTES", "30")


def get_reservation_sweep_interval_seconds() -> int:
    return _positive_int_from_env("RESERVATION_SWEEP_INTERVAL_SECONDS", "1800")


def is_reservation_reaper_enabled() -> bool:
    raw_value = os.getenv("RESERVATION_REAPER_ENABLED", "true").strip().lower()
    if raw_value in TRUE_VALUES:
        return True
    if raw_value in FALSE_VALUES:
        return False
    raise RuntimeError("RESERVATION_REAPER_ENABLED must be a boolean")


def get_payment_webhook_token() -> str:
    return os.getenv("PAYMENT_WEBHOOK_TOKEN", "").strip()
