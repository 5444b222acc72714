# backend/backoffice/config.py
from __future__ import annotations
import os


def _csv_env(name: str, default: str) -> frozenset[str]:
    raw = os.environ.get(name, default)
    return frozenset(part.strip().lower() for part in raw.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/backoffice.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///backoffice.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Busy timeout: how long a writer waits for the SQLite write lock
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {"timeout": float(os.environ.get("DB_LOCK_TIMEOUT_SECONDS", "15"))},
    }

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Sales
    SALE_CANCEL_WINDOW_HOURS = int(os.environ.get("SALE_CANCEL_WINDOW_HOURS", "24"))
    PAYMENT_METHODS = _csv_env("PAYMENT_METHODS", "cash,card,mobile_money,check")
    CASH_PAYMENT_METHODS = _csv_env("CASH_PAYMENT_METHODS", "cash")
    DEFAULT_TAX_RATE_BPS = int(os.environ.get("DEFAULT_TAX_RATE_BPS", "0"))

    # Stock alerts: critical below this share of min_stock
    STOCK_CRITICAL_RATIO = 0.25


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    LOG_LEVEL = "DEBUG"
