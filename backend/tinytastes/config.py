# backend/tinytastes/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tinytastes.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tinytastes.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Orders
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "TT")
    PAYMENT_WINDOW_HOURS = int(os.environ.get("PAYMENT_WINDOW_HOURS", "24"))
    PAYMENT_REMINDER_WINDOW_HOURS = int(os.environ.get("PAYMENT_REMINDER_WINDOW_HOURS", "2"))

    # Background payment sweep (off by default; cron can call `flask payments sweep`)
    PAYMENT_SWEEP_ENABLED = _env_bool("PAYMENT_SWEEP_ENABLED", False)
    PAYMENT_SWEEP_INTERVAL_SECONDS = int(os.environ.get("PAYMENT_SWEEP_INTERVAL_SECONDS", "300"))

    # Inventory
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "5"))
    RESTOCK_PERIOD_DAYS = int(os.environ.get("RESTOCK_PERIOD_DAYS", "7"))
    WEEKLY_RESTOCK_RATIO = float(os.environ.get("WEEKLY_RESTOCK_RATIO", "0.3"))
    STATISTICS_CACHE_TTL_SECONDS = int(os.environ.get("STATISTICS_CACHE_TTL_SECONDS", "60"))

    # Admin API throttling (fixed window, per client address)
    ADMIN_RATE_LIMIT = int(os.environ.get("ADMIN_RATE_LIMIT", "60"))
    ADMIN_RATE_LIMIT_WINDOW_SECONDS = int(os.environ.get("ADMIN_RATE_LIMIT_WINDOW_SECONDS", "60"))
