# backend/compliance/routes/job_orders.py
"""
Job order lifecycle endpoints.

POST /api/job-orders goes through the sync queue: 201 with the job when
online, 202 with the offline id when the device is offline.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import handle_domain_errors, json_body, require_actor
from ..errors import OfflineDeferred
from ..services import job_order_service, sync_service
from ..validation import optional_int, require_fields

job_orders_bp = Blueprint("job_orders", __name__, url_prefix="/api/job-orders")


@job_orders_bp.get("")
@require_actor
@handle_domain_errors
def list_job_orders():
    rows, total = job_order_service.list_job_orders(
        status=request.args.get("status"),
        assigned_to_user_id=optional_int(request.args.get("assigned_to"), "assigned_to"),
        client_id=optional_int(request.args.get("client_id"), "client_id"),
        limit=optional_int(request.args.get("limit"), "limit") or 100,
        offset=optional_int(request.args.get("offset"), "offset") or 0,
    )
    return jsonify({"job_orders": [j.to_dict() for j in rows], "total": total}), 200


@job_orders_bp.post("")
@require_actor
@handle_domain_errors
def create_job_order():
    """
    Create a job order.

    Request body:
    {
        "client_id": int,
        "service_types": [str],
        "scheduled_at": ISO-8601 (optional),
        "location": str (optional),
        "priority": "Low" | "Medium" | "High" (optional),
        "amount_cents": int (optional),
        "assigned_to_user_id": int (optional),
        "stock_holding_id": int (optional sticker allocation),
        "sticker_number": str (optional),
        "photo": str (optional, data URL),
        "tag_number": str (optional),
        "offline_id": str (optional, idempotency key)
    }

    Returns:
        201: job order created
        202: queued while offline ({"deferred": true, "offline_id": ...})
    """
    data = json_body()
    offline_id = data.pop("offline_id", None)
    if offline_id:
        offline_id = sync_service.validate_offline_id(offline_id)

    result = sync_service.submit_job_order(actor_id=g.actor_id, payload=data, offline_id=offline_id)
    if isinstance(result, OfflineDeferred):
        return jsonify(result.to_dict()), 202
    return jsonify(result.to_dict()), 201


@job_orders_bp.get("/<int:job_order_id>")
@require_actor
@handle_domain_errors
def get_job_order(job_order_id: int):
    return jsonify(job_order_service.get_job_order(job_order_id).to_dict()), 200


@job_orders_bp.post("/<int:job_order_id>/approve")
@require_actor
@handle_domain_errors
def approve_job_order(job_order_id: int):
    job = job_order_service.approve(job_order_id, actor_id=g.actor_id, on_behalf_of=g.on_behalf_of)
    return jsonify(job.to_dict()), 200


@job_orders_bp.post("/<int:job_order_id>/reject")
@require_actor
@handle_domain_errors
def reject_job_order(job_order_id: int):
    data = json_body()
    require_fields(data, ("reason",))
    job = job_order_service.reject(
        job_order_id, data["reason"], actor_id=g.actor_id, on_behalf_of=g.on_behalf_of
    )
    return jsonify(job.to_dict()), 200


@job_orders_bp.post("/<int:job_order_id>/start")
@require_actor
@handle_domain_errors
def start_execution(job_order_id: int):
    job = job_order_service.start_execution(job_order_id, actor_id=g.actor_id)
    return jsonify(job.to_dict()), 200


@job_orders_bp.post("/<int:job_order_id>/report")
@require_actor
@handle_domain_errors
def submit_report(job_order_id: int):
    data = json_body()
    require_fields(data, ("report_data",))
    job = job_order_service.submit_report(job_order_id, data["report_data"], actor_id=g.actor_id)
    return jsonify(job.to_dict()), 200


@job_orders_bp.post("/<int:job_order_id>/revision")
@require_actor
@handle_domain_errors
def request_revision(job_order_id: int):
    data = json_body()
    require_fields(data, ("comments",))
    job = job_order_service.request_revision(
        job_order_id, data["comments"], actor_id=g.actor_id, on_behalf_of=g.on_behalf_of
    )
    return jsonify(job.to_dict()), 200
