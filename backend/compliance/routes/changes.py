# backend/compliance/routes/changes.py
"""
Change feed, read views, notifications and the activity log.

Views are recomputed on every request; clients poll /api/changes and
refresh whatever the returned events touch.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import handle_domain_errors, require_actor
from ..services import activity_service, change_bus, notification_service, permission_service, views_service
from ..validation import optional_int

changes_bp = Blueprint("changes", __name__, url_prefix="/api")


@changes_bp.get("/changes")
@require_actor
@handle_domain_errors
def changes_since():
    cursor = optional_int(request.args.get("since"), "since") or 0
    limit = optional_int(request.args.get("limit"), "limit") or 500
    return jsonify(change_bus.changes_since(cursor, limit=limit)), 200


@changes_bp.get("/views/inspectors/<int:inspector_id>/stock")
@require_actor
@handle_domain_errors
def inspector_stock(inspector_id: int):
    return jsonify(views_service.inspector_stock(inspector_id)), 200


@changes_bp.get("/views/lots")
@require_actor
@handle_domain_errors
def lot_availability():
    return jsonify({"lots": views_service.lot_availability()}), 200


@changes_bp.get("/views/pending-counts")
@require_actor
@handle_domain_errors
def pending_counts():
    return jsonify(views_service.pending_counts()), 200


@changes_bp.get("/notifications")
@require_actor
@handle_domain_errors
def list_notifications():
    rows = notification_service.list_notifications(
        g.actor_id,
        unread_only=request.args.get("unread") == "true",
    )
    return jsonify({"notifications": [n.to_dict() for n in rows]}), 200


@changes_bp.post("/notifications/<int:notification_id>/read")
@require_actor
@handle_domain_errors
def mark_notification_read(notification_id: int):
    note = notification_service.mark_read(notification_id, user_id=g.actor_id)
    return jsonify(note.to_dict()), 200


@changes_bp.get("/activity")
@require_actor
@handle_domain_errors
def list_activity():
    permission_service.authorize(g.actor_id, "viewActivityLogs")
    rows, total = activity_service.list_activity(
        entity_type=request.args.get("entity_type"),
        entity_id=optional_int(request.args.get("entity_id"), "entity_id"),
        actor_user_id=optional_int(request.args.get("actor_user_id"), "actor_user_id"),
        limit=optional_int(request.args.get("limit"), "limit") or 100,
        offset=optional_int(request.args.get("offset"), "offset") or 0,
    )
    return jsonify({"activity": [r.to_dict() for r in rows], "total": total}), 200
