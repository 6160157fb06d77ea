from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

DEFAULT_APP_URL = "http://localhost:5173"
DEFAULT_FROM_EMAIL = "Advisement Scheduler <no-reply@advisement-scheduler.app>"
DEFAULT_RESEND_API_BASE_URL = "https://api.resend.com"


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    database_url: str
    admin_api_key: str
    app_url: str
    resend_api_key: str
    resend_from_email: str
    resend_api_base_url: str
    resend_timeout_seconds: float
    resend_webhook_secret: str
    log_level: str


def _clean(value: str) -> str:
    return value.strip().strip('"').strip("'")


def _get_required_env(name: str) -> str:
    value = _clean(os.getenv(name, ""))
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _get_optional_env(name: str, default: str = "") -> str:
    return _clean(os.getenv(name, "")) or default


def _get_float_env(name: str, default: float) -> float:
    raw = _get_optional_env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be a number") from exc


@lru_cache
def get_settings() -> Settings:
    return Settings(
        app_name="Advisement Scheduler API",
        app_version="1.0.0",
        database_url=_get_required_env("DATABASE_URL"),
        admin_api_key=_get_required_env("ADMIN_API_KEY"),
        app_url=_get_optional_env("APP_URL", DEFAULT_APP_URL).rstrip("/"),
        resend_api_key=_get_optional_env("RESEND_API_KEY"),
        resend_from_email=_get_optional_env("RESEND_FROM_EMAIL", DEFAULT_FROM_EMAIL),
        resend_api_base_url=_get_optional_env("RESEND_API_BASE_URL", DEFAULT_RESEND_API_BASE_URL),
        resend_timeout_seconds=_get_float_env("RESEND_HTTP_TIMEOUT_SECONDS", 10.0),
        resend_webhook_secret=_get_optional_env("RESEND_WEBHOOK_SECRET"),
        log_level=_get_optional_env("LOG_LEVEL", "INFO").upper(),
    )
