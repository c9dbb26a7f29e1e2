# backend/qradmin/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file next to the instance folder unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///qradmin.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Upper bound for a single generate/upload/bulk-allocate call
    QR_MAX_BATCH_SIZE = _int_env("QR_MAX_BATCH_SIZE", 10_000)

    # Bank name used by the CLI generator when none is passed
    DEFAULT_BANK_NAME = os.environ.get("DEFAULT_BANK_NAME", "Demo Bank Ltd")

    SESSION_ABSOLUTE_TIMEOUT_HOURS = _int_env("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24)
    SESSION_IDLE_TIMEOUT_HOURS = _int_env("SESSION_IDLE_TIMEOUT_HOURS", 2)

    # Browser origins allowed to call the API (comma-separated)
    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
        ).split(",")
        if origin.strip()
    ]
