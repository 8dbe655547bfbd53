# backend/compliance/config.py
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

    # SQLite DB stored in backend/instance/compliance.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///compliance.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Change feed consumers are told to poll at this interval (bounded staleness)
    CHANGE_POLL_INTERVAL_SECONDS = int(os.environ.get("CHANGE_POLL_INTERVAL_SECONDS", "2"))

    # Periodic replay of the offline job-order queue
    OFFLINE_SYNC_INTERVAL_SECONDS = int(os.environ.get("OFFLINE_SYNC_INTERVAL_SECONDS", "30"))

    CERTIFICATE_VALIDITY_YEARS = int(os.environ.get("CERTIFICATE_VALIDITY_YEARS", "1"))

    # Compare-and-set attempts on a lot before giving up with a Conflict
    ALLOCATION_RETRY_ATTEMPTS = int(os.environ.get("ALLOCATION_RETRY_ATTEMPTS", "5"))

    # Legacy rows only: match a request's requester by name when the id is missing
    ALLOW_REQUESTER_NAME_FALLBACK = _env_bool("ALLOW_REQUESTER_NAME_FALLBACK", False)

    ACTIVITY_LOG_RETENTION_DAYS = int(os.environ.get("ACTIVITY_LOG_RETENTION_DAYS", "1089"))
    ACTIVITY_LOG_MAX_ROWS = int(os.environ.get("ACTIVITY_LOG_MAX_ROWS", "10000"))

    # Sticker serials are 5-digit numbers
    STICKER_SEQUENCE_MIN = 10000
    STICKER_SEQUENCE_MAX = 99999
