# backend/compliance/routes/system.py
"""
System health and actor capability endpoints.
"""

import time

from flask import Blueprint, current_app, g, jsonify
from sqlalchemy.exc import SQLAlchemyError

from ..decorators import handle_domain_errors, require_actor
from ..extensions import db
from ..models import StickerLot, User
from ..services import permission_service, sync_service
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity with two trivial counts."""
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        lot_count = db.session.query(StickerLot).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"users": user_count, "lots": lot_count},
        }
    except SQLAlchemyError:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Health check.

    Returns:
    - 200: database reachable (sync state included)
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()

    checks = {"database": database_health}
    if database_health["status"] == "healthy":
        checks["sync"] = sync_service.get_sync_status()

    http_status = 200 if database_health["status"] == "healthy" else 503
    response = {
        "status": database_health["status"],
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }
    return response, http_status


@system_bp.get("/api/me/capabilities")
@require_actor
@handle_domain_errors
def my_capabilities():
    user = permission_service.get_user(g.actor_id)
    return jsonify({
        "user": user.to_dict(),
        "capabilities": permission_service.get_user_capabilities(user),
    }), 200
