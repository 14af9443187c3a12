# backend/till/routes/system.py
"""
System health endpoint.

Checks database connectivity and the order-session table so a till can
tell "server down" apart from "no cart".
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import User, OrderSession
from ..models.order_sessions import STATUSES
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"users": user_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_order_sessions_health() -> dict:
    """Count order sessions per status."""
    start_time = time.time()
    try:
        counts = {
            status: db.session.query(OrderSession).filter_by(status=status).count()
            for status in STATUSES
        }
        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": counts,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Order session health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Order session store error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: All checks healthy
    - 503: One or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    order_sessions_health = check_order_sessions_health()

    unhealthy_count = sum(
        1 for check in (database_health, order_sessions_health) if check["status"] == "unhealthy"
    )
    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": "unhealthy" if unhealthy_count else "healthy",
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "order_sessions": order_sessions_health,
        }
    }

    return response, 503 if unhealthy_count else 200
