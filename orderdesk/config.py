# orderdesk/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in instance/orderdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///orderdesk.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds a SQLite writer waits for the database lock before giving up
    SQLITE_BUSY_TIMEOUT = float(os.environ.get("SQLITE_BUSY_TIMEOUT", "15"))

    # Order numbers look like BSP-20250222-4821 (display only)
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "BSP")

    # Single-product storefront: checkouts without a SKU buy this one
    DEFAULT_PRODUCT_SKU = os.environ.get("DEFAULT_PRODUCT_SKU", "BLUESHIELD-PRO-001")
    DEFAULT_PAYMENT_METHOD = os.environ.get("DEFAULT_PAYMENT_METHOD", "pix")

    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))

    # Cost factor for provisional customer credentials
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Never leak storage error text unless explicitly asked to
    EXPOSE_INTERNAL_ERRORS = _env_bool("EXPOSE_INTERNAL_ERRORS", False)
