# backend/stockroom/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockroom.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockroom.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Identity bridge: the owner email is promoted to ELEVATED_ROLE on sync,
    # everyone else starts as DEFAULT_ROLE.
    ELEVATED_ACCESS_EMAIL = os.environ.get("ELEVATED_ACCESS_EMAIL")
    ELEVATED_ROLE = "admin"
    DEFAULT_ROLE = "viewer"

    # Identity provider keys are only reported by /health; the gateway in
    # front of the API verifies sessions and forwards the trusted headers below.
    IDENTITY_PROVIDER_SECRET_KEY = os.environ.get("IDENTITY_PROVIDER_SECRET_KEY")
    IDENTITY_PROVIDER_PUBLISHABLE_KEY = os.environ.get("IDENTITY_PROVIDER_PUBLISHABLE_KEY")

    IDENTITY_HEADER_SUBJECT = os.environ.get("IDENTITY_HEADER_SUBJECT", "X-Identity-Subject")
    IDENTITY_HEADER_EMAIL = os.environ.get("IDENTITY_HEADER_EMAIL", "X-Identity-Email")
    IDENTITY_HEADER_FIRST_NAME = os.environ.get("IDENTITY_HEADER_FIRST_NAME", "X-Identity-First-Name")
    IDENTITY_HEADER_LAST_NAME = os.environ.get("IDENTITY_HEADER_LAST_NAME", "X-Identity-Last-Name")

    # 1600 basis points = 16%
    SALES_TAX_RATE_BPS = _env_int("SALES_TAX_RATE_BPS", 1600)

    MOVEMENTS_DEFAULT_PAGE_SIZE = 50
    MOVEMENTS_MAX_PAGE_SIZE = 200

    MARGIN_LOW_THRESHOLD_PCT = 15
    MARGIN_HIGH_THRESHOLD_PCT = 30

    CORS_ALLOWED_ORIGINS = os.environ.get(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    )
    API_VERSION = "1.0.0"
