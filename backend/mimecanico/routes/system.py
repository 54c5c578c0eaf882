# Overview: System health and service index endpoints.

"""
System endpoints.

GET /api/health checks the database and the token revocation table and
reports per-check latency. GET / lists the API resources for discovery.
"""

import sys
import time
from flask import Blueprint, current_app

from ..extensions import db
from ..models import User, RevokedToken, DocumentSequence
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def check_database_health() -> dict:
    """Count a few core tables. Returns dict with status and details."""
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        sequence_count = db.session.query(DocumentSequence).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "document_sequences": sequence_count,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_token_service_health() -> dict:
    start_time = time.time()
    try:
        now = utcnow()
        revoked = db.session.query(RevokedToken).count()
        expired = db.session.query(RevokedToken).filter(RevokedToken.expires_at < now).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "revoked_tokens": revoked,
                "expired_pending_cleanup": expired,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Token service health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Token service error",
        }


@system_bp.get("/api/health")
def health():
    """
    Returns:
    - 200: all checks healthy
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    token_health = check_token_service_health()

    all_checks = [database_health, token_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    return {
        "success": http_status == 200,
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "token_service": token_health,
        },
    }, http_status


@system_bp.get("/")
def index():
    env = "production" if not current_app.debug else "development"
    return {
        "success": True,
        "message": "MiMecanico workshop API",
        "api_version": API_VERSION,
        "environment": env,
        "python_version": sys.version.split()[0],
        "endpoints": {
            "auth": "/api/auth",
            "users": "/api/users",
            "clients": "/api/clients",
            "vehicles": "/api/vehicles",
            "inventory": "/api/inventory",
            "work_orders": "/api/work-orders",
            "budgets": "/api/budgets",
            "invoices": "/api/invoices",
            "parameters": "/api/parameters",
            "health": "/api/health",
        },
    }
