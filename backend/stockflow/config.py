# backend/stockflow/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Stock-status classification threshold for variants/products without their own
    DEFAULT_LOW_STOCK_THRESHOLD = int(os.environ.get("DEFAULT_LOW_STOCK_THRESHOLD", "5"))

    # Order lifecycle policies
    # delivered -> returned leaves lifetime-sold untouched unless enabled
    RETURN_DECREMENTS_TOTAL_SOLD = _env_flag("RETURN_DECREMENTS_TOTAL_SOLD", False)
    # confirmed/processing -> cancelled keeps stock taken unless enabled
    RESTOCK_ON_CANCEL = _env_flag("RESTOCK_ON_CANCEL", False)

    # PUR-000001, ADJ-000001, ORD-000001
    DOCUMENT_NUMBER_PAD = int(os.environ.get("DOCUMENT_NUMBER_PAD", "6"))

    # Outbound collaborators (unset -> log-only gateways)
    LOYALTY_SERVICE_URL = os.environ.get("LOYALTY_SERVICE_URL")
    COUPON_SERVICE_URL = os.environ.get("COUPON_SERVICE_URL")
    COLLABORATOR_TIMEOUT_SECONDS = float(os.environ.get("COLLABORATOR_TIMEOUT_SECONDS", "5"))
