# Overview: User-facing notifications emitted by lifecycle transitions.

from __future__ import annotations

from ..extensions import db
from ..models import Notification, User
from ..models.activity import NOTIFICATION_TYPES
from ..errors import NotFound, PermissionDenied, ValidationError
from ..time_utils import utcnow
from . import change_bus
from .concurrency import run_with_retry


def _notify_inner(
    user_id: int,
    *,
    title: str,
    message: str,
    notification_type: str = "general",
    link: str | None = None,
) -> Notification:
    if notification_type not in NOTIFICATION_TYPES:
        raise ValidationError(f"Invalid notification type '{notification_type}'", field="type")

    note = Notification(
        user_id=user_id,
        notification_type=notification_type,
        title=title,
        message=message,
        link=link,
    )
    db.session.add(note)
    db.session.flush()
    change_bus.announce(
        change_bus.NOTIFICATIONS_UPDATED,
        entity_type="notification",
        entity_id=note.id,
    )
    return note


def notify_user(user_id: int | None, **kwargs) -> Notification | None:
    """Queue a notification inside the caller's transaction. No-op without a user."""
    if not user_id:
        return None
    return _notify_inner(user_id, **kwargs)


def notify_roles(roles, *, exclude_user_id: int | None = None, **kwargs) -> list[Notification]:
    """Notify every active user holding any of `roles`."""
    roles = set(roles)
    users = db.session.query(User).filter(User.is_active.is_(True)).order_by(User.id).all()
    sent = []
    for user in users:
        if user.id == exclude_user_id:
            continue
        if roles.intersection(user.roles or []):
            sent.append(_notify_inner(user.id, **kwargs))
    return sent


def list_notifications(user_id: int, *, unread_only: bool = False, limit: int = 100) -> list[Notification]:
    query = db.session.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.id.desc()).limit(max(1, min(limit, 500))).all()


def mark_read(notification_id: int, *, user_id: int) -> Notification:
    def _op():
        note = db.session.query(Notification).filter_by(id=notification_id).first()
        if not note:
            raise NotFound("Notification", notification_id)
        if note.user_id != user_id:
            raise PermissionDenied("Cannot modify another user's notification")
        if not note.is_read:
            note.is_read = True
            note.read_at = utcnow()
            change_bus.announce(
                change_bus.NOTIFICATIONS_UPDATED,
                entity_type="notification",
                entity_id=note.id,
                actor_user_id=user_id,
            )
        db.session.commit()
        return note

    return run_with_retry(_op)
