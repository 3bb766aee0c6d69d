# backend/salon_ledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/salon_ledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///salon_ledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Invoicing limits
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "EUR")
    INVOICE_MAX_LINES = int(os.environ.get("INVOICE_MAX_LINES", "100"))
    INVOICE_MAX_GLOBAL_DISCOUNT_PCT = int(os.environ.get("INVOICE_MAX_GLOBAL_DISCOUNT_PCT", "50"))
    INVOICE_MAX_DUE_DAYS = int(os.environ.get("INVOICE_MAX_DUE_DAYS", "365"))

    # Bounded retries for lost races (optimistic locks, sqlite busy)
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))

    # Browser origins allowed to call the API (comma separated)
    CORS_ORIGINS = [
        o.strip()
        for o in os.environ.get("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
        if o.strip()
    ]
