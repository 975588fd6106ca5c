# backend/stockroom/routes/system.py
"""
System health and version endpoints.

/health reports each dependency with its own status and latency:
- database: reachability (SELECT 1); unhealthy -> 503
- auth_config: identity-provider keys present; missing -> degraded
- role_catalog: default roles seeded; missing -> degraded
"""

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..services import permission_service
from stockroom.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_auth_config_health() -> dict:
    start_time = time.time()
    keys = {
        "secret_key": bool(current_app.config.get("IDENTITY_PROVIDER_SECRET_KEY")),
        "publishable_key": bool(current_app.config.get("IDENTITY_PROVIDER_PUBLISHABLE_KEY")),
    }
    elapsed_ms = (time.time() - start_time) * 1000
    configured = all(keys.values())
    return {
        "status": "healthy" if configured else "degraded",
        "latency_ms": round(elapsed_ms, 2),
        "details": {name: "configured" if ok else "not_configured" for name, ok in keys.items()},
    }


def check_role_catalog_health() -> dict:
    start_time = time.time()
    try:
        missing_roles = permission_service.missing_default_roles()
        elapsed_ms = (time.time() - start_time) * 1000
        if missing_roles:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"Missing roles: {', '.join(missing_roles)}",
            }
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"roles": permission_service.get_role_catalog().role_names},
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Role catalog health check failed")
        return {
            "status": "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Role catalog unavailable"
        }


@system_bp.get("/health")
def health():
    """
    Composite health check.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: the database is unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    auth_health = check_auth_config_health()
    catalog_health = check_role_catalog_health()

    all_checks = [database_health, auth_health, catalog_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "auth_config": auth_health,
            "role_catalog": catalog_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": current_app.config.get("API_VERSION", "1.0.0"),
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
