# backend/compliance/routes/delegations.py
"""
Delegation management and resolution.
"""

from flask import Blueprint, g, jsonify

from ..decorators import handle_domain_errors, json_body, require_actor
from ..errors import ValidationError
from ..services import delegation_service
from ..validation import coerce_int, iso_datetime, require_fields

delegations_bp = Blueprint("delegations", __name__, url_prefix="/api/delegations")


@delegations_bp.get("/<int:delegator_id>")
@require_actor
@handle_domain_errors
def get_delegation(delegator_id: int):
    return jsonify(delegation_service.get_delegation(delegator_id).to_dict()), 200


@delegations_bp.put("/<int:delegator_id>")
@require_actor
@handle_domain_errors
def set_delegation(delegator_id: int):
    """
    Replace the delegator's delegates.

    Request body:
    {
        "delegate_ids": [int, ...]   (priority order, first = primary),
        "start_date": ISO-8601 (optional),
        "end_date": ISO-8601 (optional)
    }
    """
    data = json_body()
    require_fields(data, ("delegate_ids",))
    if not isinstance(data["delegate_ids"], list):
        raise ValidationError("delegate_ids must be a list", field="delegate_ids")

    delegation = delegation_service.set_delegation(
        delegator_id=delegator_id,
        delegate_ids=[coerce_int(v, "delegate_ids") for v in data["delegate_ids"]],
        start_date=iso_datetime(data["start_date"], "start_date") if data.get("start_date") else None,
        end_date=iso_datetime(data["end_date"], "end_date") if data.get("end_date") else None,
        actor_id=g.actor_id,
    )
    return jsonify(delegation.to_dict()), 200


@delegations_bp.delete("/<int:delegator_id>")
@require_actor
@handle_domain_errors
def clear_delegation(delegator_id: int):
    delegation_service.clear_delegation(delegator_id=delegator_id, actor_id=g.actor_id)
    return jsonify({"cleared": True}), 200


@delegations_bp.post("/<int:delegator_id>/delegates/<int:user_id>/active")
@require_actor
@handle_domain_errors
def set_delegate_active(delegator_id: int, user_id: int):
    data = json_body()
    require_fields(data, ("active",))
    delegation = delegation_service.set_delegate_active(
        delegator_id=delegator_id,
        delegate_user_id=user_id,
        active=bool(data["active"]),
        actor_id=g.actor_id,
    )
    return jsonify(delegation.to_dict()), 200


@delegations_bp.get("/<int:delegator_id>/resolve")
@require_actor
@handle_domain_errors
def resolve_delegate(delegator_id: int):
    return jsonify({"delegate": delegation_service.resolve_delegate(delegator_id)}), 200


@delegations_bp.get("/acting-for")
@require_actor
@handle_domain_errors
def acting_for():
    """Delegators the current actor may act on behalf of right now."""
    rows = delegation_service.delegations_for_delegate(g.actor_id)
    return jsonify({"delegations": [d.to_dict() for d in rows]}), 200
