from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TAG_STATUS_AVAILABLE = "AVAILABLE"
TAG_STATUS_ALLOCATED = "ALLOCATED"
TAG_STATUS_USED = "USED"
TAG_STATUS_REMOVED = "REMOVED"
VALID_TAG_STATUSES = (TAG_STATUS_AVAILABLE, TAG_STATUS_ALLOCATED, TAG_STATUS_USED, TAG_STATUS_REMOVED)


class Tag(db.Model):
    """
    Physical, individually numbered tag (not printable, one unit per row).

    LIFECYCLE: AVAILABLE -> ALLOCATED -> USED, and -> REMOVED from any
    state except REMOVED. REMOVED is terminal.
    """
    __tablename__ = "tags"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tag_number = db.Column(db.String(64), nullable=False, unique=True, index=True)
    status = db.Column(db.String(16), nullable=False, default=TAG_STATUS_AVAILABLE, index=True)

    allocated_to_job_order_id = db.Column(db.Integer, db.ForeignKey("job_orders.id"), nullable=True, index=True)
    allocated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    allocated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    removed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    removed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    removal_reported_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Tag {self.tag_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tag_number": self.tag_number,
            "status": self.status,
            "allocated_to": self.allocated_to_job_order_id,
            "allocated_at": to_utc_z(self.allocated_at),
            "allocated_by_user_id": self.allocated_by_user_id,
            "used_at": to_utc_z(self.used_at),
            "removed_at": to_utc_z(self.removed_at),
            "removed_by_user_id": self.removed_by_user_id,
            "removal_reported_at": to_utc_z(self.removal_reported_at),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
