from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"
SEVERITY_CRITICAL = "critical"

NOTIFICATION_TYPES = ("approval", "assignment", "payment", "expiry", "general")


class ActivityLog(db.Model):
    """
    Business audit trail (append-only).

    actor_* is always the true identity. displayed_actor_* is who third
    parties see when the action was taken under delegation.
    """
    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    actor_name = db.Column(db.String(255), nullable=True)
    actor_role = db.Column(db.String(32), nullable=True)

    displayed_actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    displayed_actor_name = db.Column(db.String(255), nullable=True)
    is_delegated = db.Column(db.Boolean, nullable=False, default=False)

    action_type = db.Column(db.String(32), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)
    entity_name = db.Column(db.String(255), nullable=True)

    description = db.Column(db.Text, nullable=False)
    details = db.Column(db.JSON, nullable=True)
    severity = db.Column(db.String(16), nullable=False, default=SEVERITY_LOW)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "actor_name": self.actor_name,
            "actor_role": self.actor_role,
            "displayed_actor_user_id": self.displayed_actor_user_id,
            "displayed_actor_name": self.displayed_actor_name,
            "is_delegated": self.is_delegated,
            "action_type": self.action_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "description": self.description,
            "details": self.details,
            "severity": self.severity,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class ChangeEvent(db.Model):
    """
    Persisted change feed. The id is the monotonic cursor consumers poll with.
    """
    __tablename__ = "change_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    event_name = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=True)
    entity_id = db.Column(db.Integer, nullable=True)
    actor_user_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "seq": self.id,
            "event": self.event_name,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class Notification(db.Model):
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_read", "user_id", "is_read"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    notification_type = db.Column(db.String(16), nullable=False, default="general")
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    link = db.Column(db.String(255), nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.notification_type,
            "title": self.title,
            "message": self.message,
            "link": self.link,
            "is_read": self.is_read,
            "read_at": to_utc_z(self.read_at),
            "created_at": to_utc_z(self.created_at),
        }
