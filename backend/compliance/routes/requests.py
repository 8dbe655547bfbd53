# backend/compliance/routes/requests.py
"""
Stock requests: submission and manager resolution.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import handle_domain_errors, json_body, require_actor
from ..models.inventory import HOLDER_INSPECTOR
from ..services import allocation_service
from ..validation import optional_int, require_fields

requests_bp = Blueprint("stock_requests", __name__, url_prefix="/api/stock-requests")


@requests_bp.get("")
@require_actor
@handle_domain_errors
def list_requests():
    rows = allocation_service.list_requests(
        status=request.args.get("status"),
        requester_id=optional_int(request.args.get("requester_id"), "requester_id"),
    )
    return jsonify({"requests": [r.to_dict() for r in rows]}), 200


@requests_bp.post("")
@require_actor
@handle_domain_errors
def submit_request():
    """
    Request body:
    {
        "qty": int,
        "requester_id": int (optional, defaults to the actor),
        "requester_type": "INSPECTOR" | "REGION" (optional),
        "size": "Large" | "Small" (optional),
        "lot_number_preference": str (optional)
    }
    """
    data = json_body()
    require_fields(data, ("qty",))
    req = allocation_service.submit_request(
        actor_id=g.actor_id,
        qty=data["qty"],
        requester_id=optional_int(data.get("requester_id"), "requester_id"),
        requester_type=data.get("requester_type") or HOLDER_INSPECTOR,
        size=data.get("size"),
        lot_number_preference=data.get("lot_number_preference"),
    )
    return jsonify(req.to_dict()), 201


@requests_bp.get("/<int:request_id>")
@require_actor
@handle_domain_errors
def get_request(request_id: int):
    return jsonify(allocation_service.get_request(request_id).to_dict()), 200


@requests_bp.post("/<int:request_id>/approve")
@require_actor
@handle_domain_errors
def approve_request(request_id: int):
    req = allocation_service.approve_request(request_id, actor_id=g.actor_id, on_behalf_of=g.on_behalf_of)
    return jsonify(req.to_dict()), 200


@requests_bp.post("/<int:request_id>/reject")
@require_actor
@handle_domain_errors
def reject_request(request_id: int):
    data = json_body()
    require_fields(data, ("reason",))
    req = allocation_service.reject_request(
        request_id, data["reason"], actor_id=g.actor_id, on_behalf_of=g.on_behalf_of
    )
    return jsonify(req.to_dict()), 200
