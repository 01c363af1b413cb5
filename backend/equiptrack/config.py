# backend/equiptrack/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/equiptrack.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///equiptrack.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Refresh denormalized machine/extension fields right after an approval
    SYNC_ON_APPROVAL = _env_flag("SYNC_ON_APPROVAL", True)

    # Transport events are validated against the end of the timeline so that
    # arrivals can be linked to transports scheduled in the future.
    TRANSPORT_VALIDATION_HORIZON = os.environ.get(
        "TRANSPORT_VALIDATION_HORIZON", "9999-12-31T00:00:00"
    )
