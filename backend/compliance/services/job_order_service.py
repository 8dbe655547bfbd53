# Overview: Job order lifecycle, payments and certificate issuance.

"""
Job order state machine.

    (new)                     --create-->          AWAITING_JOB_APPROVAL
    AWAITING_JOB_APPROVAL     --approve-->         APPROVED
    APPROVED                  --start_execution--> IN_EXECUTION
    APPROVED | IN_EXECUTION   --submit_report-->   AWAITING_REPORT_APPROVAL
    AWAITING_REPORT_APPROVAL  --approve-->         APPROVED (report approved)
    AWAITING_REPORT_APPROVAL  --request_revision-> IN_EXECUTION
    any state before PAID     --reject-->          REJECTED
    APPROVED                  --confirm_payment--> PAID (+ one Certificate)

PAYMENTS:
- submit_payment records a PENDING payment; only one may be pending.
- confirm_payment: PENDING -> CONFIRMED, job -> PAID, certificate issued
  exactly once (unique constraint on certificates.job_order_id).
- reject_payment: PENDING -> FAILED; the job keeps its status.

Pending payments have no timeout; they stay open until an accountant acts.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Certificate, Client, JobOrder, Payment, StickerUsage, StockHolding, Tag
from ..models.inventory import ACTIVE_USAGE_STATUSES
from ..models.jobs import (
    CERTIFICATE_STATUS_EXPIRED,
    CERTIFICATE_STATUS_VALID,
    JOB_APPROVED,
    JOB_AWAITING_JOB_APPROVAL,
    JOB_AWAITING_REPORT_APPROVAL,
    JOB_IN_EXECUTION,
    JOB_PAID,
    JOB_PRIORITIES,
    JOB_REJECTED,
    PAYMENT_METHODS,
    PAYMENT_STATUS_CONFIRMED,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PENDING,
    SERVICE_TYPES,
    VALID_JOB_STATUSES,
)
from ..permissions import ROLE_GM, ROLE_INSPECTOR, ROLE_MANAGER, ROLE_TRAINER
from ..errors import Conflict, NotFound, PermissionDenied, ValidationError
from ..time_utils import add_years, parse_iso_datetime, utcnow
from ..validation import choice, coerce_int, non_blank, optional_int
from . import change_bus, notification_service
from .activity_service import (
    ACTION_APPROVE,
    ACTION_CREATE,
    ACTION_PAYMENT,
    ACTION_REJECT,
    ACTION_SUBMIT,
    ACTION_UPDATE,
    log_activity,
    log_identity,
)
from .allocation_service import _allocate_sticker_inner, _cancel_job_stickers_inner
from .concurrency import lock_for_update, run_with_retry
from .permission_service import authorize, has_capability
from .sequence_service import next_sequence_number
from .tag_service import _allocate_tag_inner


PRE_PAID_STATUSES = (
    JOB_AWAITING_JOB_APPROVAL,
    JOB_IN_EXECUTION,
    JOB_AWAITING_REPORT_APPROVAL,
    JOB_APPROVED,
)


# =============================================================================
# Lookups
# =============================================================================

def get_job_order(job_order_id: int) -> JobOrder:
    job = db.session.query(JobOrder).filter_by(id=job_order_id).first()
    if not job:
        raise NotFound("Job order", job_order_id)
    return job


def _get_for_update(job_order_id: int) -> JobOrder:
    job = lock_for_update(db.session.query(JobOrder).filter_by(id=job_order_id)).first()
    if not job:
        raise NotFound("Job order", job_order_id)
    return job


def list_job_orders(
    *,
    status: str | None = None,
    assigned_to_user_id: int | None = None,
    client_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[JobOrder], int]:
    query = db.session.query(JobOrder)
    if status:
        choice(status, VALID_JOB_STATUSES, "status")
        query = query.filter(JobOrder.status == status)
    if assigned_to_user_id is not None:
        query = query.filter(JobOrder.assigned_to_user_id == assigned_to_user_id)
    if client_id is not None:
        query = query.filter(JobOrder.client_id == client_id)

    total = query.count()

    if offset < 0:
        offset = 0
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500

    rows = query.order_by(JobOrder.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def _announce(job: JobOrder, actor_id: int | None) -> None:
    change_bus.announce(
        change_bus.JOB_ORDERS_UPDATED,
        entity_type="job_order",
        entity_id=job.id,
        actor_user_id=actor_id,
    )


def _require_status(job: JobOrder, allowed: tuple, action: str) -> None:
    if job.status not in allowed:
        raise Conflict(f"Cannot {action} job order {job.job_number} in status {job.status}")


# =============================================================================
# Creation
# =============================================================================

def next_job_number() -> str:
    year = utcnow().year
    return f"JO-{year}{next_sequence_number('JOB_ORDER', str(year)):03d}"


def validate_job_payload(payload: dict) -> dict:
    """
    Normalize job-order creation fields. Raises ValidationError and never
    touches the database, so it can run before a job is queued offline.
    """
    client_id = coerce_int(payload.get("client_id"), "client_id") if payload.get("client_id") is not None else None
    if client_id is None:
        raise ValidationError("client_id is required", field="client_id")

    service_types = payload.get("service_types")
    if isinstance(service_types, str):
        service_types = [service_types]
    if not service_types or not isinstance(service_types, (list, tuple)):
        raise ValidationError("service_types must be a non-empty list", field="service_types")
    for st in service_types:
        choice(st, SERVICE_TYPES, "service_types")

    scheduled_at = payload.get("scheduled_at")
    if scheduled_at is not None and not hasattr(scheduled_at, "year"):
        try:
            scheduled_at = parse_iso_datetime(scheduled_at)
        except (TypeError, ValueError):
            raise ValidationError("scheduled_at must be an ISO-8601 datetime", field="scheduled_at")

    amount_cents = optional_int(payload.get("amount_cents"), "amount_cents") or 0
    if amount_cents < 0:
        raise ValidationError("amount_cents cannot be negative", field="amount_cents")

    return {
        "client_id": client_id,
        "service_types": list(dict.fromkeys(service_types)),
        "scheduled_at": scheduled_at,
        "location": (payload.get("location") or "").strip() or None,
        "priority": choice(payload.get("priority") or "Medium", JOB_PRIORITIES, "priority"),
        "amount_cents": amount_cents,
        "assigned_to_user_id": optional_int(payload.get("assigned_to_user_id"), "assigned_to_user_id"),
        "region_id": optional_int(payload.get("region_id"), "region_id"),
        "stock_holding_id": optional_int(payload.get("stock_holding_id"), "stock_holding_id"),
        "sticker_number": (str(payload["sticker_number"]).strip() or None) if payload.get("sticker_number") else None,
        "photo": payload.get("photo"),
        "tag_number": (str(payload["tag_number"]).strip() or None) if payload.get("tag_number") else None,
    }


def _create_job_order_inner(identity, fields: dict, *, offline_id: str | None = None) -> JobOrder:
    """Create the job and attach any sticker/tag allocation. No commit."""
    actor = identity.actual
    client = db.session.query(Client).filter_by(id=fields["client_id"]).first()
    if not client or not client.is_active:
        raise NotFound("Client", fields["client_id"])

    assignee_id = fields.get("assigned_to_user_id")
    if assignee_id is None and (actor.has_role(ROLE_INSPECTOR) or actor.has_role(ROLE_TRAINER)):
        assignee_id = actor.id
    if assignee_id is not None and assignee_id != actor.id and not has_capability(actor, "assignJobs"):
        raise PermissionDenied(f"{actor.name} cannot assign jobs to others", capability="assignJobs")

    job = JobOrder(
        job_number=next_job_number(),
        offline_id=offline_id,
        client_id=client.id,
        service_types=fields["service_types"],
        scheduled_at=fields.get("scheduled_at"),
        location=fields.get("location"),
        priority=fields.get("priority") or "Medium",
        region_id=fields.get("region_id") or actor.region_id or client.region_id,
        status=JOB_AWAITING_JOB_APPROVAL,
        assigned_to_user_id=assignee_id,
        created_by_user_id=actor.id,
        amount_cents=fields.get("amount_cents") or 0,
    )
    db.session.add(job)
    db.session.flush()

    if fields.get("stock_holding_id") is not None:
        holding = lock_for_update(
            db.session.query(StockHolding).filter_by(id=fields["stock_holding_id"])
        ).first()
        if not holding:
            raise NotFound("Stock holding", fields["stock_holding_id"])
        _allocate_sticker_inner(
            holding,
            job,
            actor=actor,
            sticker_number=fields.get("sticker_number"),
            photo=fields.get("photo"),
        )

    if fields.get("tag_number"):
        tag = lock_for_update(db.session.query(Tag).filter_by(tag_number=fields["tag_number"])).first()
        if not tag:
            raise NotFound("Tag", fields["tag_number"])
        _allocate_tag_inner(tag, job, actor_id=actor.id)

    log_activity(
        actor=actor,
        action_type=ACTION_CREATE,
        entity_type="JOB_ORDER",
        entity_id=job.id,
        entity_name=job.job_number,
        description=f"Created job order {job.job_number} for {client.name}",
        details={"service_types": job.service_types, "offline_id": offline_id},
    )
    _announce(job, actor.id)
    return job


def create_job_order(*, actor_id: int, payload: dict, offline_id: str | None = None) -> JobOrder:
    """
    Create a job order (AWAITING_JOB_APPROVAL), optionally allocating a
    sticker from `stock_holding_id` and a tag by `tag_number` in the same
    transaction.
    """
    def _op():
        identity = authorize(actor_id, "createJobOrder")
        fields = validate_job_payload(payload)
        if offline_id:
            existing = db.session.query(JobOrder).filter_by(offline_id=offline_id).first()
            if existing:
                return existing
        job = _create_job_order_inner(identity, fields, offline_id=offline_id)
        db.session.commit()
        return job

    return run_with_retry(_op)


# =============================================================================
# Execution and approval
# =============================================================================

def _require_worker(identity, job: JobOrder) -> None:
    user = identity.displayed
    if user.id in (job.assigned_to_user_id, job.created_by_user_id):
        return
    if has_capability(user, "approveJobOrders"):
        return
    raise PermissionDenied(f"{user.name} is not assigned to job order {job.job_number}")


def start_execution(job_order_id: int, *, actor_id: int) -> JobOrder:
    def _op():
        identity = authorize(actor_id)
        job = _get_for_update(job_order_id)
        _require_worker(identity, job)
        _require_status(job, (JOB_APPROVED,), "start")
        if job.report_approved_at is not None:
            raise Conflict(f"Job order {job.job_number} already has an approved report")

        job.status = JOB_IN_EXECUTION
        log_activity(
            actor=identity.actual,
            action_type=ACTION_UPDATE,
            entity_type="JOB_ORDER",
            entity_id=job.id,
            entity_name=job.job_number,
            description=f"Started work on job order {job.job_number}",
        )
        _announce(job, identity.actual.id)
        db.session.commit()
        return job

    return run_with_retry(_op)


def submit_report(job_order_id: int, report_data: dict, *, actor_id: int) -> JobOrder:
    def _op():
        identity = authorize(actor_id)
        if not report_data or not isinstance(report_data, dict):
            raise ValidationError("report_data must be a non-empty object", field="report_data")
        job = _get_for_update(job_order_id)
        _require_worker(identity, job)
        _require_status(job, (JOB_APPROVED, JOB_IN_EXECUTION), "submit a report for")
        if job.report_approved_at is not None:
            raise Conflict(f"Job order {job.job_number} already has an approved report")

        job.report_data = dict(report_data)
        job.report_submitted_at = utcnow()
        job.revision_comments = None
        job.status = JOB_AWAITING_REPORT_APPROVAL

        log_activity(
            actor=identity.actual,
            action_type=ACTION_SUBMIT,
            entity_type="JOB_ORDER",
            entity_id=job.id,
            entity_name=job.job_number,
            description=f"Submitted report for job order {job.job_number}",
        )
        _announce(job, identity.actual.id)
        db.session.commit()
        return job

    return run_with_retry(_op)


def approve(job_order_id: int, *, actor_id: int, on_behalf_of: int | None = None) -> JobOrder:
    """Supervisor approval of either the job itself or its report."""
    def _op():
        identity = authorize(actor_id, "approveJobOrders", on_behalf_of=on_behalf_of)
        job = _get_for_update(job_order_id)
        _require_status(job, (JOB_AWAITING_JOB_APPROVAL, JOB_AWAITING_REPORT_APPROVAL), "approve")

        now = utcnow()
        if job.status == JOB_AWAITING_JOB_APPROVAL:
            job.approved_by_user_id = identity.actual.id
            job.approved_at = now
            what = "job order"
        else:
            job.report_approved_at = now
            what = "report for job order"
        job.status = JOB_APPROVED

        log_identity(
            identity,
            action_type=ACTION_APPROVE,
            entity_type="JOB_ORDER",
            entity_id=job.id,
            entity_name=job.job_number,
            description=f"Approved {what} {job.job_number}",
        )
        notification_service.notify_user(
            job.assigned_to_user_id,
            title="Job order approved",
            message=f"The {what} {job.job_number} was approved.",
            notification_type="approval",
            link=f"/job-orders/{job.id}",
        )
        _announce(job, identity.actual.id)
        db.session.commit()
        return job

    return run_with_retry(_op)


def reject(job_order_id: int, reason: str, *, actor_id: int, on_behalf_of: int | None = None) -> JobOrder:
    def _op():
        identity = authorize(actor_id, "approveJobOrders", on_behalf_of=on_behalf_of)
        text = non_blank(reason, "reason")
        job = _get_for_update(job_order_id)
        _require_status(job, PRE_PAID_STATUSES, "reject")

        job.status = JOB_REJECTED
        job.rejected_by_user_id = identity.actual.id
        job.rejected_at = utcnow()
        job.rejection_reason = text
        released = _cancel_job_stickers_inner(job)

        log_identity(
            identity,
            action_type=ACTION_REJECT,
            entity_type="JOB_ORDER",
            entity_id=job.id,
            entity_name=job.job_number,
            description=f"Rejected job order {job.job_number}: {text}",
            severity="medium",
        )
        notification_service.notify_user(
            job.assigned_to_user_id,
            title="Job order rejected",
            message=f"Job order {job.job_number} was rejected: {text}",
            notification_type="approval",
            link=f"/job-orders/{job.id}",
        )
        if released:
            change_bus.announce(change_bus.STOCK_UPDATED, entity_type="job_order", entity_id=job.id,
                                actor_user_id=identity.actual.id)
        _announce(job, identity.actual.id)
        db.session.commit()
        return job

    return run_with_retry(_op)


def request_revision(job_order_id: int, comments: str, *, actor_id: int, on_behalf_of: int | None = None) -> JobOrder:
    def _op():
        identity = authorize(actor_id, "approveJobOrders", on_behalf_of=on_behalf_of)
        text = non_blank(comments, "comments")
        job = _get_for_update(job_order_id)
        _require_status(job, (JOB_AWAITING_REPORT_APPROVAL,), "request a revision of")

        job.status = JOB_IN_EXECUTION
        job.revision_comments = text

        log_identity(
            identity,
            action_type=ACTION_UPDATE,
            entity_type="JOB_ORDER",
            entity_id=job.id,
            entity_name=job.job_number,
            description=f"Requested revision of report for {job.job_number}: {text}",
        )
        notification_service.notify_user(
            job.assigned_to_user_id,
            title="Report revision requested",
            message=f"Report for {job.job_number} needs revision: {text}",
            notification_type="approval",
            link=f"/job-orders/{job.id}",
        )
        _announce(job, identity.actual.id)
        db.session.commit()
        return job

    return run_with_retry(_op)


# =============================================================================
# Payments
# =============================================================================

def _pending_payment(job: JobOrder) -> Payment | None:
    return lock_for_update(
        db.session.query(Payment)
        .filter(Payment.job_order_id == job.id, Payment.status == PAYMENT_STATUS_PENDING)
        .order_by(Payment.id.desc())
    ).first()


def list_payments(*, job_order_id: int | None = None, status: str | None = None) -> list[Payment]:
    query = db.session.query(Payment)
    if job_order_id is not None:
        query = query.filter(Payment.job_order_id == job_order_id)
    if status:
        query = query.filter(Payment.status == status)
    return query.order_by(Payment.id.asc()).all()


def submit_payment(
    job_order_id: int,
    *,
    actor_id: int,
    method: str,
    amount_cents=None,
    proof_of_payment: str | None = None,
) -> Payment:
    def _op():
        identity = authorize(actor_id)
        pay_method = choice(method, PAYMENT_METHODS, "method")
        job = _get_for_update(job_order_id)

        client = job.client
        is_client = client is not None and client.user_id == identity.actual.id
        if not is_client and not has_capability(identity.actual, "confirmPayments"):
            raise PermissionDenied(
                f"{identity.actual.name} cannot submit payments for {job.job_number}",
                capability="confirmPayments",
            )
        _require_status(job, (JOB_APPROVED,), "pay")
        if _pending_payment(job):
            raise Conflict(f"Job order {job.job_number} already has a pending payment")

        amount = job.amount_cents if amount_cents is None else coerce_int(amount_cents, "amount_cents")
        if not amount or amount <= 0:
            raise ValidationError("amount_cents must be positive", field="amount_cents")

        payment = Payment(
            job_order_id=job.id,
            client_id=job.client_id,
            amount_cents=amount,
            method=pay_method,
            status=PAYMENT_STATUS_PENDING,
            proof_of_payment=proof_of_payment,
            submitted_by_user_id=identity.actual.id,
        )
        db.session.add(payment)
        db.session.flush()
        job.payment_status = PAYMENT_STATUS_PENDING

        log_activity(
            actor=identity.actual,
            action_type=ACTION_PAYMENT,
            entity_type="PAYMENT",
            entity_id=payment.id,
            entity_name=job.job_number,
            description=f"Payment of {amount} cents submitted for {job.job_number} ({pay_method})",
        )
        change_bus.announce(change_bus.PAYMENTS_UPDATED, entity_type="payment", entity_id=payment.id,
                            actor_user_id=identity.actual.id)
        _announce(job, identity.actual.id)
        db.session.commit()
        return payment

    return run_with_retry(_op)


def _issue_certificate_inner(job: JobOrder, payment: Payment) -> Certificate:
    """Create the job's single certificate. No commit."""
    if db.session.query(Certificate.id).filter_by(job_order_id=job.id).first():
        raise Conflict(f"Job order {job.job_number} already has a certificate")

    now = utcnow()
    cert_number = f"CERT-{now.year}-{next_sequence_number('CERTIFICATE', str(now.year)):03d}"
    doc_number = f"DOC-{next_sequence_number('DOCUMENT'):03d}"

    usage = (
        db.session.query(StickerUsage)
        .filter(StickerUsage.job_order_id == job.id, StickerUsage.status.in_(ACTIVE_USAGE_STATUSES))
        .order_by(StickerUsage.id.asc())
        .first()
    )
    if usage and usage.sticker_number:
        sticker_number = usage.sticker_number
    else:
        sticker_number = f"STK-{next_sequence_number('STICKER'):03d}"

    years = current_app.config["CERTIFICATE_VALIDITY_YEARS"]
    cert = Certificate(
        job_order_id=job.id,
        payment_id=payment.id,
        client_id=job.client_id,
        certificate_number=cert_number,
        document_number=doc_number,
        sticker_number=sticker_number,
        verification_code=f"{doc_number}-{sticker_number}-{cert_number}",
        service_type=(job.service_types or [None])[0],
        issue_date=now,
        expiry_date=add_years(now, years),
        status=CERTIFICATE_STATUS_VALID,
    )
    try:
        with db.session.begin_nested():
            db.session.add(cert)
    except IntegrityError:
        raise Conflict(f"Job order {job.job_number} already has a certificate")

    change_bus.announce(change_bus.CERTIFICATES_UPDATED, entity_type="certificate", entity_id=cert.id)
    return cert


def confirm_payment(job_order_id: int, *, actor_id: int, on_behalf_of: int | None = None) -> dict:
    """
    Accountant confirmation: payment CONFIRMED, job PAID, one certificate.

    Fails Conflict when the job is not APPROVED or has no pending payment.
    """
    def _op():
        identity = authorize(actor_id, "confirmPayments", on_behalf_of=on_behalf_of)
        job = _get_for_update(job_order_id)
        _require_status(job, (JOB_APPROVED,), "confirm payment for")
        payment = _pending_payment(job)
        if not payment:
            raise Conflict(f"Job order {job.job_number} has no pending payment")

        now = utcnow()
        payment.status = PAYMENT_STATUS_CONFIRMED
        payment.confirmed_by_user_id = identity.actual.id
        payment.confirmed_at = now
        job.status = JOB_PAID
        job.payment_status = PAYMENT_STATUS_CONFIRMED

        cert = _issue_certificate_inner(job, payment)

        log_identity(
            identity,
            action_type=ACTION_PAYMENT,
            entity_type="PAYMENT",
            entity_id=payment.id,
            entity_name=job.job_number,
            description=f"Confirmed payment for {job.job_number}; certificate {cert.certificate_number} issued",
            details={"certificate_number": cert.certificate_number},
        )
        client = job.client
        notification_service.notify_user(
            client.user_id if client else None,
            title="Payment confirmed",
            message=f"Payment for {job.job_number} confirmed. Certificate {cert.certificate_number} is available.",
            notification_type="payment",
            link=f"/certificates/{cert.id}",
        )
        change_bus.announce(change_bus.PAYMENTS_UPDATED, entity_type="payment", entity_id=payment.id,
                            actor_user_id=identity.actual.id)
        _announce(job, identity.actual.id)
        db.session.commit()
        return {"job_order": job, "payment": payment, "certificate": cert}

    return run_with_retry(_op)


def reject_payment(job_order_id: int, reason: str, *, actor_id: int, on_behalf_of: int | None = None) -> Payment:
    """Payment -> FAILED with the reason; the job's status is left as it was."""
    def _op():
        identity = authorize(actor_id, "confirmPayments", on_behalf_of=on_behalf_of)
        text = non_blank(reason, "reason")
        job = _get_for_update(job_order_id)
        payment = _pending_payment(job)
        if not payment:
            raise Conflict(f"Job order {job.job_number} has no pending payment")

        payment.status = PAYMENT_STATUS_FAILED
        payment.failed_by_user_id = identity.actual.id
        payment.failed_at = utcnow()
        payment.failure_reason = text
        job.payment_status = PAYMENT_STATUS_FAILED

        log_identity(
            identity,
            action_type=ACTION_REJECT,
            entity_type="PAYMENT",
            entity_id=payment.id,
            entity_name=job.job_number,
            description=f"Rejected payment for {job.job_number}: {text}",
            severity="medium",
        )
        message = f"Payment for {job.job_number} was rejected: {text}"
        client = job.client
        notification_service.notify_user(
            client.user_id if client else None,
            title="Payment rejected",
            message=message,
            notification_type="payment",
            link=f"/job-orders/{job.id}",
        )
        notification_service.notify_roles(
            (ROLE_MANAGER, ROLE_GM),
            exclude_user_id=client.user_id if client else None,
            title="Payment rejected",
            message=message,
            notification_type="payment",
            link=f"/job-orders/{job.id}",
        )
        change_bus.announce(change_bus.PAYMENTS_UPDATED, entity_type="payment", entity_id=payment.id,
                            actor_user_id=identity.actual.id)
        _announce(job, identity.actual.id)
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# Certificates
# =============================================================================

def certificate_status(cert: Certificate, now=None) -> str:
    now = now or utcnow()
    if cert.status == CERTIFICATE_STATUS_VALID and cert.expiry_date and cert.expiry_date < now:
        return CERTIFICATE_STATUS_EXPIRED
    return cert.status


def get_certificate_for_job(job_order_id: int) -> Certificate:
    cert = db.session.query(Certificate).filter_by(job_order_id=job_order_id).first()
    if not cert:
        raise NotFound("Certificate for job order", job_order_id)
    return cert


def verify_certificate(code: str) -> dict:
    """Look a certificate up by certificate number or verification code."""
    value = non_blank(code, "code")
    cert = (
        db.session.query(Certificate)
        .filter(db.or_(Certificate.certificate_number == value, Certificate.verification_code == value))
        .first()
    )
    if not cert:
        raise NotFound("Certificate", value)

    status = certificate_status(cert)
    body = cert.to_dict()
    body["status"] = status
    return {"valid": status == CERTIFICATE_STATUS_VALID, "status": status, "certificate": body}
