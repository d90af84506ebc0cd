# backend/posledger/routes/system.py
"""
System health and version endpoints.

Provides a health check of the database and the ledger's bookkeeping tables
and version information for deployment debugging.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import DailySequence, MaterialAlert, Shift
from ..models.shifts import SHIFT_OPEN
from ..time_utils import get_clock, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with a trivial round trip.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_ledger_health() -> dict:
    """
    Report today's sequence counter, open shifts and open alerts.

    Open alerts make the ledger "degraded": still operational, but someone
    should restock.
    """
    start_time = time.time()
    try:
        today = get_clock().today()
        counter = db.session.query(DailySequence).filter_by(business_date=today).first()
        open_shifts = db.session.query(Shift).filter_by(status=SHIFT_OPEN).count()
        open_alerts = db.session.query(MaterialAlert).filter_by(is_resolved=False).count()

        elapsed_ms = (time.time() - start_time) * 1000
        details = {
            "business_date": today.isoformat(),
            "last_sequence": counter.last_sequence if counter else None,
            "open_shifts": open_shifts,
            "open_alerts": open_alerts,
        }
        if open_alerts:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"{open_alerts} low-stock alert(s) open",
                "details": details,
            }
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Ledger health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Ledger tables unavailable"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    ledger_health = check_ledger_health()

    all_checks = [database_health, ledger_health]
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
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "ledger": ledger_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """
    Version endpoint for deployment debugging. Exposes no secrets or paths.
    """
    import sys

    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "0.1.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "business_timezone": current_app.config.get("BUSINESS_TIMEZONE"),
        "server_time": utcnow().isoformat() + "Z",
    }
