# backend/compliance/routes/sync.py
"""
Offline queue: connectivity, replay and manager reconciliation.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import handle_domain_errors, json_body, require_actor
from ..errors import ValidationError
from ..services import sync_service
from ..validation import optional_int, require_fields

sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


@sync_bp.get("/status")
@require_actor
@handle_domain_errors
def sync_status():
    return jsonify(sync_service.get_sync_status()), 200


@sync_bp.post("/online")
@require_actor
@handle_domain_errors
def set_online():
    data = json_body()
    require_fields(data, ("online",))
    if not isinstance(data["online"], bool):
        raise ValidationError("online must be a boolean", field="online")
    return jsonify(sync_service.set_online(data["online"], actor_id=g.actor_id)), 200


@sync_bp.post("/run")
@require_actor
@handle_domain_errors
def run_sync():
    return jsonify(sync_service.sync_offline_queue(actor_id=g.actor_id)), 200


@sync_bp.get("/queue")
@require_actor
@handle_domain_errors
def list_queue():
    items = sync_service.list_queue(include_finished=request.args.get("all") == "true")
    return jsonify({"items": [i.to_dict() for i in items]}), 200


@sync_bp.post("/queue")
@require_actor
@handle_domain_errors
def queue_job_order():
    """Explicitly queue a job order regardless of connectivity."""
    data = json_body()
    offline_id = data.pop("offline_id", None)
    deferred = sync_service.queue_offline_job_order(actor_id=g.actor_id, payload=data, offline_id=offline_id)
    return jsonify(deferred.to_dict()), 202


@sync_bp.get("/queue/<offline_id>")
@require_actor
@handle_domain_errors
def get_queue_item(offline_id: str):
    return jsonify(sync_service.get_item(offline_id).to_dict()), 200


@sync_bp.post("/queue/<offline_id>/reassign")
@require_actor
@handle_domain_errors
def reassign_allocation(offline_id: str):
    data = json_body()
    item = sync_service.reassign_offline_allocation(
        offline_id,
        stock_holding_id=optional_int(data.get("stock_holding_id"), "stock_holding_id"),
        actor_id=g.actor_id,
    )
    return jsonify(item.to_dict()), 200


@sync_bp.post("/queue/<offline_id>/discard")
@require_actor
@handle_domain_errors
def discard_item(offline_id: str):
    data = json_body()
    require_fields(data, ("reason",))
    item = sync_service.discard_offline_item(offline_id, data["reason"], actor_id=g.actor_id)
    return jsonify(item.to_dict()), 200


@sync_bp.get("/holdings/<int:holding_id>/local-available")
@require_actor
@handle_domain_errors
def local_available(holding_id: int):
    return jsonify({
        "holding_id": holding_id,
        "local_available": sync_service.local_available(holding_id),
    }), 200
