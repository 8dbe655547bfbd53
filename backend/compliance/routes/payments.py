# backend/compliance/routes/payments.py
"""
Payments against job orders and certificate lookup.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import handle_domain_errors, json_body, require_actor
from ..services import job_order_service
from ..validation import optional_int, require_fields

payments_bp = Blueprint("payments", __name__, url_prefix="/api")


@payments_bp.get("/job-orders/<int:job_order_id>/payments")
@require_actor
@handle_domain_errors
def list_payments(job_order_id: int):
    job_order_service.get_job_order(job_order_id)
    rows = job_order_service.list_payments(job_order_id=job_order_id)
    return jsonify({"payments": [p.to_dict() for p in rows]}), 200


@payments_bp.post("/job-orders/<int:job_order_id>/payments")
@require_actor
@handle_domain_errors
def submit_payment(job_order_id: int):
    """
    Request body:
    {
        "method": "Credit Card" | "Bank Transfer" | "Cash",
        "amount_cents": int (optional, defaults to the job amount),
        "proof_of_payment": str (optional)
    }
    """
    data = json_body()
    require_fields(data, ("method",))
    payment = job_order_service.submit_payment(
        job_order_id,
        method=data["method"],
        amount_cents=data.get("amount_cents"),
        proof_of_payment=data.get("proof_of_payment"),
        actor_id=g.actor_id,
    )
    return jsonify(payment.to_dict()), 201


@payments_bp.post("/job-orders/<int:job_order_id>/payments/confirm")
@require_actor
@handle_domain_errors
def confirm_payment(job_order_id: int):
    result = job_order_service.confirm_payment(
        job_order_id, actor_id=g.actor_id, on_behalf_of=g.on_behalf_of
    )
    return jsonify({
        "job_order": result["job_order"].to_dict(),
        "payment": result["payment"].to_dict(),
        "certificate": result["certificate"].to_dict(),
    }), 200


@payments_bp.post("/job-orders/<int:job_order_id>/payments/reject")
@require_actor
@handle_domain_errors
def reject_payment(job_order_id: int):
    data = json_body()
    require_fields(data, ("reason",))
    payment = job_order_service.reject_payment(
        job_order_id, data["reason"], actor_id=g.actor_id, on_behalf_of=g.on_behalf_of
    )
    return jsonify(payment.to_dict()), 200


@payments_bp.get("/payments")
@require_actor
@handle_domain_errors
def list_all_payments():
    rows = job_order_service.list_payments(
        job_order_id=optional_int(request.args.get("job_order_id"), "job_order_id"),
        status=request.args.get("status"),
    )
    return jsonify({"payments": [p.to_dict() for p in rows]}), 200


@payments_bp.get("/job-orders/<int:job_order_id>/certificate")
@require_actor
@handle_domain_errors
def get_certificate(job_order_id: int):
    cert = job_order_service.get_certificate_for_job(job_order_id)
    body = cert.to_dict()
    body["status"] = job_order_service.certificate_status(cert)
    return jsonify(body), 200


@payments_bp.get("/certificates/verify/<code>")
@handle_domain_errors
def verify_certificate(code: str):
    """Public verification by certificate number or verification code."""
    return jsonify(job_order_service.verify_certificate(code)), 200
