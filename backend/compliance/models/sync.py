from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SYNC_STATUS_PENDING = "pending"
SYNC_STATUS_SYNCING = "syncing"
SYNC_STATUS_SYNCED = "synced"
SYNC_STATUS_FAILED = "failed"
SYNC_STATUS_DISCARDED = "discarded"

# Items a replay pass still has to merge
REPLAYABLE_SYNC_STATUSES = (SYNC_STATUS_PENDING, SYNC_STATUS_FAILED)


class OfflineJobOrder(db.Model):
    """
    Job-order creation captured while disconnected.

    Nothing canonical (job orders, usages, tags) is touched until replay.
    The row keeps its own allocation snapshot so the creator's view can
    subtract pending debits from canonical availability.

    FIFO order is the primary key order.
    """
    __tablename__ = "offline_job_queue"
    __table_args__ = (
        db.Index("ix_offline_queue_status", "sync_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    offline_id = db.Column(db.String(64), nullable=False, unique=True, index=True)

    payload = db.Column(db.JSON, nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    stock_holding_id = db.Column(db.Integer, db.ForeignKey("stock_holdings.id"), nullable=True)
    sticker_number = db.Column(db.String(16), nullable=True)
    photo = db.Column(db.Text, nullable=True)
    tag_number = db.Column(db.String(64), nullable=True)

    sync_status = db.Column(db.String(16), nullable=False, default=SYNC_STATUS_PENDING)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    job_order_id = db.Column(db.Integer, db.ForeignKey("job_orders.id"), nullable=True)
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    discarded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    discard_reason = db.Column(db.Text, nullable=True)

    queued_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_replayable(self) -> bool:
        return self.sync_status in REPLAYABLE_SYNC_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "offline_id": self.offline_id,
            "payload": self.payload,
            "created_by_user_id": self.created_by_user_id,
            "stock_holding_id": self.stock_holding_id,
            "sticker_number": self.sticker_number,
            "has_photo": bool(self.photo),
            "tag_number": self.tag_number,
            "sync_status": self.sync_status,
            "attempts": self.attempts,
            "last_attempt_at": to_utc_z(self.last_attempt_at),
            "error_message": self.error_message,
            "job_order_id": self.job_order_id,
            "synced_at": to_utc_z(self.synced_at),
            "discard_reason": self.discard_reason,
            "queued_at": to_utc_z(self.queued_at),
        }


class SyncState(db.Model):
    """Singleton row (id=1) holding the connectivity flag and replay bookkeeping."""
    __tablename__ = "sync_state"

    id = db.Column(db.Integer, primary_key=True)
    is_online = db.Column(db.Boolean, nullable=False, default=True)
    is_syncing = db.Column(db.Boolean, nullable=False, default=False)
    last_sync_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
