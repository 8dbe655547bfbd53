from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Job-order phases. Each value names exactly one true phase; the old
# Pending/Completed + "has report" combination is gone.
JOB_AWAITING_JOB_APPROVAL = "AWAITING_JOB_APPROVAL"
JOB_IN_EXECUTION = "IN_EXECUTION"
JOB_AWAITING_REPORT_APPROVAL = "AWAITING_REPORT_APPROVAL"
JOB_APPROVED = "APPROVED"
JOB_PAID = "PAID"
JOB_REJECTED = "REJECTED"

VALID_JOB_STATUSES = (
    JOB_AWAITING_JOB_APPROVAL,
    JOB_IN_EXECUTION,
    JOB_AWAITING_REPORT_APPROVAL,
    JOB_APPROVED,
    JOB_PAID,
    JOB_REJECTED,
)

# Vocabulary still used by older UI collaborators
LEGACY_STATUS_LABELS = {
    JOB_AWAITING_JOB_APPROVAL: "Pending",
    JOB_IN_EXECUTION: "In Progress",
    JOB_AWAITING_REPORT_APPROVAL: "Completed",
    JOB_APPROVED: "Approved",
    JOB_PAID: "Paid",
    JOB_REJECTED: "Rejected",
}

SERVICE_TYPES = ("Inspection", "Assessment", "Training", "NDT")
JOB_PRIORITIES = ("Low", "Medium", "High")

PAYMENT_STATUS_PENDING = "PENDING"
PAYMENT_STATUS_CONFIRMED = "CONFIRMED"
PAYMENT_STATUS_FAILED = "FAILED"

PAYMENT_METHODS = ("Credit Card", "Bank Transfer", "Cash")

CERTIFICATE_STATUS_VALID = "VALID"
CERTIFICATE_STATUS_EXPIRED = "EXPIRED"
CERTIFICATE_STATUS_REVOKED = "REVOKED"


class JobOrder(db.Model):
    """
    Unit of billable service work. Its lifecycle gates certificate issuance.

    job_number is the permanent identifier (JO-<year><NNN>). offline_id is
    set when the job was created through the offline queue and makes
    replay idempotent.
    """
    __tablename__ = "job_orders"
    __table_args__ = (
        db.Index("ix_job_orders_status_assignee", "status", "assigned_to_user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    job_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    offline_id = db.Column(db.String(64), nullable=True, unique=True)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    service_types = db.Column(db.JSON, nullable=False, default=list)
    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    location = db.Column(db.String(255), nullable=True)
    priority = db.Column(db.String(16), nullable=False, default="Medium")
    region_id = db.Column(db.Integer, db.ForeignKey("regions.id"), nullable=True, index=True)

    status = db.Column(db.String(32), nullable=False, default=JOB_AWAITING_JOB_APPROVAL, index=True)
    assigned_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=True)

    report_data = db.Column(db.JSON, nullable=True)
    report_submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    report_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revision_comments = db.Column(db.Text, nullable=True)

    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    rejected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    client = db.relationship("Client", backref=db.backref("job_orders", lazy=True))
    sticker_usages = db.relationship("StickerUsage", backref="job_order", lazy=True, order_by="StickerUsage.id")
    tags = db.relationship("Tag", backref="job_order", lazy=True)
    payments = db.relationship("Payment", backref="job_order", lazy=True, order_by="Payment.id")

    def __repr__(self) -> str:
        return f"<JobOrder {self.job_number} status={self.status}>"

    @property
    def legacy_status(self) -> str:
        return LEGACY_STATUS_LABELS.get(self.status, self.status)

    @property
    def active_sticker_usage(self):
        for usage in self.sticker_usages:
            if usage.status in ("ALLOCATED", "USED"):
                return usage
        return None

    @property
    def active_tag(self):
        for tag in self.tags:
            if tag.status != "REMOVED":
                return tag
        return None

    def to_dict(self) -> dict:
        usage = self.active_sticker_usage
        tag = self.active_tag
        return {
            "id": self.id,
            "job_number": self.job_number,
            "offline_id": self.offline_id,
            "client_id": self.client_id,
            "client_name": self.client.name if self.client else None,
            "service_types": list(self.service_types or []),
            "scheduled_at": to_utc_z(self.scheduled_at),
            "location": self.location,
            "priority": self.priority,
            "region_id": self.region_id,
            "status": self.status,
            "legacy_status": self.legacy_status,
            "assigned_to_user_id": self.assigned_to_user_id,
            "created_by_user_id": self.created_by_user_id,
            "amount_cents": self.amount_cents,
            "payment_status": self.payment_status,
            "report_data": self.report_data,
            "report_submitted_at": to_utc_z(self.report_submitted_at),
            "report_approved_at": to_utc_z(self.report_approved_at),
            "revision_comments": self.revision_comments,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "rejected_by_user_id": self.rejected_by_user_id,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "sticker_allocation": usage.to_dict() if usage else None,
            "tag_allocation": {"tag_id": tag.id, "tag_number": tag.tag_number} if tag else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Payment(db.Model):
    """
    Client payment against a job order.

    LIFECYCLE: PENDING -> CONFIRMED (issues the certificate) | FAILED.
    A failed payment leaves the job order where it was; the client may
    submit a new one.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_job_status", "job_order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    job_order_id = db.Column(db.Integer, db.ForeignKey("job_orders.id"), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    proof_of_payment = db.Column(db.Text, nullable=True)

    submitted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    confirmed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_order_id": self.job_order_id,
            "client_id": self.client_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "status": self.status,
            "has_proof": bool(self.proof_of_payment),
            "submitted_by_user_id": self.submitted_by_user_id,
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "failed_by_user_id": self.failed_by_user_id,
            "failed_at": to_utc_z(self.failed_at),
            "failure_reason": self.failure_reason,
            "created_at": to_utc_z(self.created_at),
        }


class Certificate(db.Model):
    """
    Issued exactly once per paid job order, as a side effect of payment
    confirmation. Never mutated afterwards.
    """
    __tablename__ = "certificates"
    __table_args__ = (
        db.UniqueConstraint("job_order_id", name="uq_certificates_job_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    job_order_id = db.Column(db.Integer, db.ForeignKey("job_orders.id"), nullable=False)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)

    certificate_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    document_number = db.Column(db.String(32), nullable=False)
    sticker_number = db.Column(db.String(32), nullable=False)
    verification_code = db.Column(db.String(128), nullable=False, unique=True, index=True)
    service_type = db.Column(db.String(32), nullable=True)

    issue_date = db.Column(db.DateTime(timezone=True), nullable=False)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=CERTIFICATE_STATUS_VALID)
    document_type = db.Column(db.String(16), nullable=False, default="Digital")
    certificate_format = db.Column(db.String(8), nullable=False, default="A4")

    job_order = db.relationship("JobOrder", backref=db.backref("certificate", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_order_id": self.job_order_id,
            "payment_id": self.payment_id,
            "client_id": self.client_id,
            "certificate_number": self.certificate_number,
            "document_number": self.document_number,
            "sticker_number": self.sticker_number,
            "verification_code": self.verification_code,
            "service_type": self.service_type,
            "issue_date": to_utc_z(self.issue_date),
            "expiry_date": to_utc_z(self.expiry_date),
            "status": self.status,
            "document_type": self.document_type,
            "certificate_format": self.certificate_format,
        }


class DocumentSequence(db.Model):
    """Per-type, per-scope counters used for job and certificate numbers."""
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "scope", name="uq_document_sequences_type_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    scope = db.Column(db.String(16), nullable=False, default="")
    next_number = db.Column(db.Integer, nullable=False, default=1)
