# backend/posledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/posledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///posledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Edit restrictions (tenants may override the windows on their own row)
    TAX_LOCK_DAYS = int(os.environ.get("TAX_LOCK_DAYS", "30"))
    OPERATOR_EDIT_WINDOW_HOURS = int(os.environ.get("OPERATOR_EDIT_WINDOW_HOURS", "24"))
    REQUIRE_EDIT_REASON = _env_bool("REQUIRE_EDIT_REASON", True)

    # Document numbering
    NUMBER_ALLOCATION_ATTEMPTS = int(os.environ.get("NUMBER_ALLOCATION_ATTEMPTS", "100"))
    DOCUMENT_INSERT_ATTEMPTS = int(os.environ.get("DOCUMENT_INSERT_ATTEMPTS", "5"))

    # nearest_unit | two_decimals | none
    ROUNDING_POLICY = os.environ.get("ROUNDING_POLICY", "nearest_unit")
