# backend/tinytastes/routes/system.py
"""
System health endpoint.

Checks the database and reports the background payment sweep so a load
balancer or uptime probe can tell a wedged instance from a healthy one.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import StockEntry, Order
from ..services.registry import get_services
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        stock_entries = db.session.query(StockEntry).count()
        orders = db.session.query(Order).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stock_entries": stock_entries,
                "orders": orders,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_payment_sweep_health() -> dict:
    scheduler = current_app.extensions.get("tinytastes.scheduler")
    enabled = bool(current_app.config["PAYMENT_SWEEP_ENABLED"])
    details = {
        "enabled": enabled,
        "scheduler_running": bool(scheduler and scheduler.running),
        "sweep_in_progress": get_services().sweeper.running,
    }
    if enabled and not details["scheduler_running"] and not current_app.testing:
        return {"status": "degraded", "warning": "Payment sweep scheduler is not running", "details": details}
    return {"status": "healthy", "details": details}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    sweep_health = check_payment_sweep_health()

    all_checks = [database_health, sweep_health]
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
            "payment_sweep": sweep_health,
        }
    }

    return response, http_status
