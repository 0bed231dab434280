# backend/marketpay/routes/system.py
"""
System health endpoint.

Reports database reachability and whether the gateway credentials this
deployment needs are configured.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from marketpay.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity with a trivial round trip.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_gateway_config() -> dict:
    """Click tenant and Payme key presence; missing credentials degrade, not fail."""
    verifier = current_app.extensions.get("click_signatures")
    tenant_id = current_app.config.get("CLICK_TENANT_ID")
    click_ready = bool(verifier and tenant_id and verifier.tenant(tenant_id))
    payme_ready = bool(current_app.config.get("PAYME_KEY"))

    warnings = []
    if not click_ready:
        warnings.append(f"Click tenant '{tenant_id or ''}' not configured")
    if not payme_ready:
        warnings.append("PAYME_KEY not configured")

    result = {
        "status": "degraded" if warnings else "healthy",
        "details": {"click": click_ready, "payme": payme_ready},
    }
    if warnings:
        result["warning"] = "; ".join(warnings)
    return result


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    gateway_health = check_gateway_config()

    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif gateway_health["status"] == "degraded":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "gateways": gateway_health,
        },
    }
    return response, http_status
