# backend/shopadmin/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shopadmin.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    SESSION_ABSOLUTE_TIMEOUT_HOURS = int(os.environ.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", "24"))

    # Stock decrement retries on lock contention / stale rows
    PURCHASE_RETRY_ATTEMPTS = int(os.environ.get("PURCHASE_RETRY_ATTEMPTS", "5"))

    # Background jobs
    JOB_WORKERS = int(os.environ.get("JOB_WORKERS", "4"))
    JOB_MAX_ATTEMPTS = int(os.environ.get("JOB_MAX_ATTEMPTS", "5"))
    JOB_POLL_INTERVAL = float(os.environ.get("JOB_POLL_INTERVAL", "1.0"))
    JOB_VISIBILITY_TIMEOUT = int(os.environ.get("JOB_VISIBILITY_TIMEOUT", "300"))
    JOB_BACKOFF_BASE = float(os.environ.get("JOB_BACKOFF_BASE", "15"))
    DAILY_REPORT_TIME = os.environ.get("DAILY_REPORT_TIME", "08:00")  # UTC, HH:MM

    # Outbound mail
    SMTP_HOST = os.environ.get("SMTP_HOST")
    SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
    SMTP_USERNAME = os.environ.get("SMTP_USERNAME")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", default=True)
    SMTP_USE_SSL = _env_bool("SMTP_USE_SSL", default=False)
    MAIL_FROM = os.environ.get("MAIL_FROM", "noreply@shopadmin.local")
    MAIL_SUPPRESS_SEND = _env_bool("MAIL_SUPPRESS_SEND", default=False)
