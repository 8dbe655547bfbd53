# backend/compliance/routes/tags.py
"""
Tag registry endpoints. Tags are addressed by their number.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import handle_domain_errors, json_body, require_actor
from ..services import tag_service
from ..validation import optional_int, require_fields

tags_bp = Blueprint("tags", __name__, url_prefix="/api/tags")


@tags_bp.get("")
@require_actor
@handle_domain_errors
def list_tags():
    tags = tag_service.list_tags(
        status=request.args.get("status"),
        job_order_id=optional_int(request.args.get("job_order_id"), "job_order_id"),
    )
    return jsonify({"tags": [t.to_dict() for t in tags]}), 200


@tags_bp.post("")
@require_actor
@handle_domain_errors
def create_tag():
    data = json_body()
    require_fields(data, ("tag_number",))
    tag = tag_service.create_tag(data["tag_number"], notes=data.get("notes"), actor_id=g.actor_id)
    return jsonify(tag.to_dict()), 201


@tags_bp.get("/<tag_number>")
@require_actor
@handle_domain_errors
def find_tag(tag_number: str):
    return jsonify(tag_service.find_by_number(tag_number).to_dict()), 200


@tags_bp.post("/<tag_number>/allocate")
@require_actor
@handle_domain_errors
def allocate_tag(tag_number: str):
    data = json_body()
    require_fields(data, ("job_order_id",))
    tag = tag_service.allocate_tag(
        tag_number, optional_int(data["job_order_id"], "job_order_id"), actor_id=g.actor_id
    )
    return jsonify(tag.to_dict()), 200


@tags_bp.post("/<tag_number>/use")
@require_actor
@handle_domain_errors
def mark_tag_used(tag_number: str):
    tag = tag_service.mark_tag_used(tag_number, actor_id=g.actor_id)
    return jsonify(tag.to_dict()), 200


@tags_bp.post("/<tag_number>/remove")
@require_actor
@handle_domain_errors
def mark_tag_removed(tag_number: str):
    data = json_body()
    tag = tag_service.mark_tag_removed(tag_number, notes=data.get("notes"), actor_id=g.actor_id)
    return jsonify(tag.to_dict()), 200
