# backend/loyalty/routes/system.py
"""
System health endpoint.

Reports database reachability and the QR secret configuration state
(never the secret itself) for deployment debugging.
"""

import time
from flask import Blueprint, current_app, jsonify
from ..extensions import db
from ..models import Member, SessionToken
from ..services import qr_service
from ..validation import ConfigurationError
from loyalty.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/v1")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        member_count = db.session.query(Member).count()
        active_sessions = db.session.query(SessionToken).filter_by(is_revoked=False).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "members": member_count,
                "active_sessions": active_sessions,
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


def check_qr_secret_health() -> dict:
    if current_app.config.get("QR_SECRET"):
        return {"status": "healthy", "details": {"secret": "configured"}}
    try:
        qr_service.resolve_secret(current_app.config)
    except ConfigurationError:
        return {"status": "unhealthy", "error": "QR_SECRET missing in production"}
    return {"status": "degraded", "details": {"secret": "development fallback"}}


@system_bp.get("/health")
def health():
    checks = {
        "database": check_database_health(),
        "qr_secret": check_qr_secret_health(),
    }
    overall = "healthy"
    if any(c["status"] == "unhealthy" for c in checks.values()):
        overall = "unhealthy"
    elif any(c["status"] == "degraded" for c in checks.values()):
        overall = "degraded"

    body = {
        "status": overall,
        "environment": current_app.config.get("LOYALTY_ENV"),
        "timestamp": to_utc_z(utcnow()),
        "checks": checks,
    }
    return jsonify(body), (503 if overall == "unhealthy" else 200)
