# Overview: Append-only business audit trail.

"""
Activity log invariants:

- Rows are only ever appended by log_activity(); the purge command is the
  sole deleter.
- Written inside the same transaction as the change they describe.
- actor_* is the true identity; displayed_actor_* is filled only when the
  action was taken on someone's behalf.
"""

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import ActivityLog, User
from ..models.activity import SEVERITY_LOW
from ..time_utils import utcnow


ACTION_CREATE = "CREATE"
ACTION_UPDATE = "UPDATE"
ACTION_DELETE = "DELETE"
ACTION_APPROVE = "APPROVE"
ACTION_REJECT = "REJECT"
ACTION_SUBMIT = "SUBMIT"
ACTION_ASSIGN = "ASSIGN"
ACTION_TRANSFER = "TRANSFER"
ACTION_PAYMENT = "PAYMENT"
ACTION_SYNC = "SYNC"
ACTION_SYSTEM_INFO = "SYSTEM_INFO"


def log_activity(
    *,
    actor: User | None,
    action_type: str,
    entity_type: str,
    description: str,
    entity_id: int | None = None,
    entity_name: str | None = None,
    details: dict | None = None,
    severity: str = SEVERITY_LOW,
    displayed_actor: User | None = None,
) -> ActivityLog:
    is_delegated = displayed_actor is not None and actor is not None and displayed_actor.id != actor.id

    row = ActivityLog(
        actor_user_id=actor.id if actor else None,
        actor_name=actor.name if actor else "System",
        actor_role=actor.active_role if actor else None,
        displayed_actor_user_id=displayed_actor.id if is_delegated else None,
        displayed_actor_name=displayed_actor.name if is_delegated else None,
        is_delegated=is_delegated,
        action_type=action_type,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_name=entity_name,
        description=description,
        details=details,
        severity=severity,
        occurred_at=utcnow(),
    )
    db.session.add(row)
    return row


def log_identity(identity, **kwargs) -> ActivityLog:
    """log_activity() for an ActingIdentity (actual + displayed actor)."""
    return log_activity(actor=identity.actual, displayed_actor=identity.displayed, **kwargs)


def list_activity(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    actor_user_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[ActivityLog], int]:
    query = db.session.query(ActivityLog)
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(ActivityLog.entity_id == entity_id)
    if actor_user_id is not None:
        query = query.filter(ActivityLog.actor_user_id == actor_user_id)

    total = query.count()

    if offset < 0:
        offset = 0
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500

    rows = query.order_by(ActivityLog.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def purge_activity(*, retention_days: int, max_rows: int) -> int:
    """
    Delete rows older than the retention window, then trim the oldest rows
    beyond max_rows. Returns the number of rows deleted. Caller commits.
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = (
        db.session.query(ActivityLog)
        .filter(ActivityLog.occurred_at < cutoff)
        .delete(synchronize_session=False)
    )

    keep_from = (
        db.session.query(ActivityLog.id)
        .order_by(ActivityLog.id.desc())
        .offset(max_rows)
        .limit(1)
        .scalar()
    )
    if keep_from is not None:
        deleted += (
            db.session.query(ActivityLog)
            .filter(ActivityLog.id <= keep_from)
            .delete(synchronize_session=False)
        )
    return deleted
