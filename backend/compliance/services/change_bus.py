# Overview: Change notification for independent views of shared state.

"""
Two channels, one source of truth:

- change_events table: the persisted, cross-process feed. Rows are added in
  the same transaction as the mutation, so a rolled-back operation leaves
  no trace. Consumers poll `changes_since(cursor)`.
- blinker signals: in-process subscribers (one signal per collection plus a
  generic "refresh"). Dispatched by `publish_committed()` only after the
  transaction commits.

Consumers recompute derived quantities on every notification; payloads
never carry quantities.
"""

from __future__ import annotations

from blinker import Namespace
from flask import current_app
from sqlalchemy import event
from sqlalchemy.orm import Session

from ..extensions import db
from ..models import ChangeEvent
from ..time_utils import utcnow


STOCK_UPDATED = "stock-updated"
REQUESTS_UPDATED = "requests-updated"
TAGS_UPDATED = "tags-updated"
JOB_ORDERS_UPDATED = "job-orders-updated"
PAYMENTS_UPDATED = "payments-updated"
CERTIFICATES_UPDATED = "certificates-updated"
SYNC_QUEUE_UPDATED = "sync-queue-updated"
DELEGATIONS_UPDATED = "delegations-updated"
NOTIFICATIONS_UPDATED = "notifications-updated"
REFRESH = "refresh"

EVENT_NAMES = (
    STOCK_UPDATED,
    REQUESTS_UPDATED,
    TAGS_UPDATED,
    JOB_ORDERS_UPDATED,
    PAYMENTS_UPDATED,
    CERTIFICATES_UPDATED,
    SYNC_QUEUE_UPDATED,
    DELEGATIONS_UPDATED,
    NOTIFICATIONS_UPDATED,
)

_signals = Namespace()
signals = {name: _signals.signal(name) for name in EVENT_NAMES + (REFRESH,)}

_PENDING_KEY = "compliance.pending_changes"
_COMMITTED_KEY = "compliance.committed_changes"


def announce(
    event_name: str,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    actor_user_id: int | None = None,
) -> ChangeEvent:
    """Record a change inside the caller's transaction."""
    if event_name not in EVENT_NAMES:
        raise ValueError(f"Unknown change event: {event_name}")

    ev = ChangeEvent(
        event_name=event_name,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        occurred_at=utcnow(),
    )
    db.session.add(ev)
    db.session.flush()

    db.session.info.setdefault(_PENDING_KEY, []).append(ev.to_dict())
    return ev


@event.listens_for(Session, "after_commit")
def _promote_pending(session):
    pending = session.info.pop(_PENDING_KEY, None)
    if pending:
        session.info.setdefault(_COMMITTED_KEY, []).extend(pending)


@event.listens_for(Session, "after_transaction_end")
def _discard_pending(session, transaction):
    # Savepoints end inside the root transaction; only the root counts.
    # On commit, after_commit has already promoted the pending events.
    if transaction.parent is None:
        session.info.pop(_PENDING_KEY, None)


def publish_committed() -> list[dict]:
    """Send signals for every change committed since the last call."""
    committed = db.session.info.pop(_COMMITTED_KEY, None)
    if not committed:
        return []

    app = current_app._get_current_object()
    for change in committed:
        signals[change["event"]].send(app, change=change)
    signals[REFRESH].send(app, changes=committed)
    return committed


def changes_since(cursor: int = 0, limit: int = 500) -> dict:
    """
    Polling side of the bus.

    Returns events with seq > cursor (oldest first), the cursor to pass on
    the next call and the advertised poll interval.
    """
    if cursor < 0:
        cursor = 0
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500

    rows = (
        db.session.query(ChangeEvent)
        .filter(ChangeEvent.id > cursor)
        .order_by(ChangeEvent.id.asc())
        .limit(limit)
        .all()
    )
    events = [row.to_dict() for row in rows]
    next_cursor = events[-1]["seq"] if events else cursor
    if not events:
        latest = db.session.query(db.func.max(ChangeEvent.id)).scalar()
        # Feed was truncated or reset below the caller's cursor
        if latest is not None and latest < cursor:
            next_cursor = latest

    return {
        "events": events,
        "cursor": next_cursor,
        "poll_interval_seconds": current_app.config["CHANGE_POLL_INTERVAL_SECONDS"],
    }
