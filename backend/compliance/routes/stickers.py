# backend/compliance/routes/stickers.py
"""
Sticker lots, issuance, transfers, holdings and usage.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import handle_domain_errors, json_body, require_actor
from ..services import allocation_service, lot_service
from ..validation import optional_int, require_fields

stickers_bp = Blueprint("stickers", __name__, url_prefix="/api/stickers")


@stickers_bp.get("/lots")
@require_actor
@handle_domain_errors
def list_lots():
    lots = lot_service.list_lots(status=request.args.get("status"), size=request.args.get("size"))
    return jsonify({"lots": [lot.to_dict() for lot in lots]}), 200


@stickers_bp.post("/lots")
@require_actor
@handle_domain_errors
def create_lot():
    """
    Create a sticker lot.

    Request body:
    {
        "lot_number": str,
        "size": "Large" | "Small",
        "qty": int,
        "start_sequence": int (optional, next free serial when omitted)
    }
    """
    data = json_body()
    require_fields(data, ("lot_number", "size", "qty"))
    lot = lot_service.create_lot(
        lot_number=data["lot_number"],
        size=data["size"],
        qty=data["qty"],
        start_sequence=data.get("start_sequence"),
        actor_id=g.actor_id,
    )
    return jsonify(lot.to_dict()), 201


@stickers_bp.get("/lots/<int:lot_id>")
@require_actor
@handle_domain_errors
def get_lot(lot_id: int):
    return jsonify(lot_service.get_lot(lot_id).to_dict()), 200


@stickers_bp.post("/lots/<int:lot_id>/archive")
@require_actor
@handle_domain_errors
def archive_lot(lot_id: int):
    lot = lot_service.archive_lot(lot_id, actor_id=g.actor_id)
    return jsonify(lot.to_dict()), 200


@stickers_bp.post("/lots/reconcile")
@require_actor
@handle_domain_errors
def reconcile_lots():
    data = json_body()
    fix = bool(data.get("fix", False))
    discrepancies = lot_service.reconcile_lots(actor_id=g.actor_id, fix=fix)
    return jsonify({"fixed": fix, "discrepancies": discrepancies}), 200


@stickers_bp.post("/issue")
@require_actor
@handle_domain_errors
def issue_stock():
    """
    Issue stickers from a lot to a holder.

    Request body:
    {
        "lot_id": int,
        "holder_type": "INSPECTOR" | "REGION",
        "holder_id": int,
        "qty": int
    }

    Returns:
        201: holding created
        409: insufficient stock (lot unchanged)
    """
    data = json_body()
    require_fields(data, ("lot_id", "holder_type", "holder_id", "qty"))
    holding = allocation_service.issue_stock(
        lot_id=optional_int(data["lot_id"], "lot_id"),
        holder_type=data["holder_type"],
        holder_id=optional_int(data["holder_id"], "holder_id"),
        qty=data["qty"],
        actor_id=g.actor_id,
    )
    return jsonify(holding.to_dict()), 201


@stickers_bp.post("/transfers")
@require_actor
@handle_domain_errors
def transfer_stock():
    data = json_body()
    require_fields(
        data,
        ("from_holder_type", "from_holder_id", "to_holder_type", "to_holder_id", "lot_number", "qty"),
    )
    transfer = allocation_service.transfer_stock(
        from_holder_type=data["from_holder_type"],
        from_holder_id=optional_int(data["from_holder_id"], "from_holder_id"),
        to_holder_type=data["to_holder_type"],
        to_holder_id=optional_int(data["to_holder_id"], "to_holder_id"),
        lot_number=data["lot_number"],
        qty=data["qty"],
        note=data.get("note"),
        actor_id=g.actor_id,
    )
    return jsonify(transfer.to_dict()), 201


@stickers_bp.get("/transfers")
@require_actor
@handle_domain_errors
def list_transfers():
    transfers = allocation_service.list_transfers(
        lot_number=request.args.get("lot_number"),
        holder_id=optional_int(request.args.get("holder_id"), "holder_id"),
    )
    return jsonify({"transfers": [t.to_dict() for t in transfers]}), 200


@stickers_bp.get("/holdings")
@require_actor
@handle_domain_errors
def list_holdings():
    holdings = allocation_service.list_holdings(
        holder_type=request.args.get("holder_type"),
        holder_id=optional_int(request.args.get("holder_id"), "holder_id"),
        lot_number=request.args.get("lot_number"),
        include_empty=request.args.get("include_empty") == "true",
    )
    rows = []
    for holding in holdings:
        row = holding.to_dict()
        row["allocatable"] = allocation_service.holding_balance(holding)
        rows.append(row)
    return jsonify({"holdings": rows}), 200


@stickers_bp.get("/usages")
@require_actor
@handle_domain_errors
def list_usages():
    usages = allocation_service.list_usages(
        job_order_id=optional_int(request.args.get("job_order_id"), "job_order_id"),
        holding_id=optional_int(request.args.get("holding_id"), "holding_id"),
        inspector_id=optional_int(request.args.get("inspector_id"), "inspector_id"),
        status=request.args.get("status"),
    )
    return jsonify({"usages": [u.to_dict() for u in usages]}), 200


@stickers_bp.post("/usages")
@require_actor
@handle_domain_errors
def allocate_sticker():
    data = json_body()
    require_fields(data, ("stock_holding_id", "job_order_id"))
    usage = allocation_service.allocate_sticker_to_job_order(
        stock_holding_id=optional_int(data["stock_holding_id"], "stock_holding_id"),
        job_order_id=optional_int(data["job_order_id"], "job_order_id"),
        sticker_number=data.get("sticker_number"),
        photo=data.get("photo"),
        actor_id=g.actor_id,
    )
    return jsonify(usage.to_dict()), 201


@stickers_bp.post("/usages/<int:usage_id>/use")
@require_actor
@handle_domain_errors
def mark_sticker_used(usage_id: int):
    usage = allocation_service.mark_sticker_used(usage_id, actor_id=g.actor_id)
    return jsonify(usage.to_dict()), 200


@stickers_bp.post("/usages/<int:usage_id>/return")
@require_actor
@handle_domain_errors
def release_sticker(usage_id: int):
    usage = allocation_service.release_sticker(usage_id, actor_id=g.actor_id)
    return jsonify(usage.to_dict()), 200


@stickers_bp.post("/usages/removal")
@require_actor
@handle_domain_errors
def report_sticker_removal():
    data = json_body()
    usage = allocation_service.report_sticker_removal(
        usage_id=optional_int(data.get("usage_id"), "usage_id"),
        job_order_id=optional_int(data.get("job_order_id"), "job_order_id"),
        actor_id=g.actor_id,
    )
    return jsonify(usage.to_dict()), 200
