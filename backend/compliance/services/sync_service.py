# Overview: Offline job-order queue and its replay into the canonical store.

"""
Offline-first job creation.

- While offline, submit_job_order() queues the creation (with its sticker
  allocation, photo and tag) under an offline id and returns
  OfflineDeferred. Canonical tables are not touched.
- local_available() subtracts queued allocations from canonical
  availability, which is what the offline creator sees.
- sync_offline_queue() replays pending/failed items strictly in FIFO order.
  Each item is merged in its own transaction by _replay_item(): success
  stamps it synced with the permanent job id; failure stamps it failed
  and leaves it queued for the next pass or for a manager. Later items
  are still attempted after a failure.
- Replay is idempotent per offline id: the job order carries the
  offline id under a unique constraint, and a synced item is never
  replayed again.
"""

from __future__ import annotations

import secrets
import string
import time

from flask import current_app

from ..extensions import db
from ..models import JobOrder, OfflineJobOrder, StockHolding, SyncState
from ..models.sync import (
    REPLAYABLE_SYNC_STATUSES,
    SYNC_STATUS_DISCARDED,
    SYNC_STATUS_FAILED,
    SYNC_STATUS_PENDING,
    SYNC_STATUS_SYNCED,
    SYNC_STATUS_SYNCING,
)
from ..errors import Conflict, DomainError, InsufficientStock, NotFound, OfflineDeferred, ValidationError
from ..time_utils import to_utc_z, utcnow
from ..validation import non_blank
from . import change_bus
from .activity_service import ACTION_SYNC, ACTION_UPDATE, log_activity
from .allocation_service import get_holding, holding_balance
from .concurrency import run_with_retry
from .job_order_service import _create_job_order_inner, validate_job_payload
from .permission_service import authorize, get_user


# Items that still hold a claim on local stock
_QUEUED_STATUSES = REPLAYABLE_SYNC_STATUSES + (SYNC_STATUS_SYNCING,)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_offline_id() -> str:
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"offline-{millis}-{suffix}"


# =============================================================================
# Connectivity
# =============================================================================

def _get_state() -> SyncState:
    state = db.session.query(SyncState).filter_by(id=1).first()
    if state is None:
        state = SyncState(id=1, is_online=True, is_syncing=False)
        db.session.add(state)
        db.session.flush()
    return state


def is_online() -> bool:
    state = db.session.query(SyncState).filter_by(id=1).first()
    return True if state is None else bool(state.is_online)


def set_online(online: bool, *, actor_id: int | None = None) -> dict:
    """
    Record connectivity. Coming back online triggers an immediate replay;
    the replay result is included in the returned status. An acting user
    needs manageStickers; actor_id=None is the system itself (CLI).
    """
    def _op():
        if actor_id is not None:
            authorize(actor_id, "manageStickers")
        state = _get_state()
        was_online = bool(state.is_online)
        state.is_online = bool(online)
        if was_online != state.is_online:
            change_bus.announce(change_bus.SYNC_QUEUE_UPDATED, entity_type="sync_state", actor_user_id=actor_id)
        db.session.commit()
        return was_online

    was_online = run_with_retry(_op)
    current_app.logger.info("Connectivity set to %s", "online" if online else "offline")

    status = get_sync_status()
    if online and not was_online:
        replay = sync_offline_queue(actor_id=actor_id)
        status = get_sync_status()
        status["replay"] = replay
    return status


# =============================================================================
# Queue
# =============================================================================

def get_item(offline_id: str) -> OfflineJobOrder:
    item = db.session.query(OfflineJobOrder).filter_by(offline_id=offline_id).first()
    if not item:
        raise NotFound("Offline job order", offline_id)
    return item


def list_queue(*, include_finished: bool = False) -> list[OfflineJobOrder]:
    query = db.session.query(OfflineJobOrder)
    if not include_finished:
        query = query.filter(OfflineJobOrder.sync_status.in_(_QUEUED_STATUSES))
    return query.order_by(OfflineJobOrder.id.asc()).all()


def _queued_position(item: OfflineJobOrder) -> int:
    return (
        db.session.query(db.func.count(OfflineJobOrder.id))
        .filter(
            OfflineJobOrder.sync_status.in_(_QUEUED_STATUSES),
            OfflineJobOrder.id <= item.id,
        )
        .scalar()
    ) or 0


def queued_claims(holding_id: int, *, exclude_item_id: int | None = None) -> int:
    query = db.session.query(db.func.count(OfflineJobOrder.id)).filter(
        OfflineJobOrder.stock_holding_id == holding_id,
        OfflineJobOrder.sync_status.in_(_QUEUED_STATUSES),
    )
    if exclude_item_id is not None:
        query = query.filter(OfflineJobOrder.id != exclude_item_id)
    return query.scalar() or 0


def local_available(holding: StockHolding | int) -> int:
    """Canonical allocatable balance minus allocations waiting in the queue."""
    if not isinstance(holding, StockHolding):
        holding = get_holding(holding)
    return max(holding_balance(holding) - queued_claims(holding.id), 0)


def queue_offline_job_order(*, actor_id: int, payload: dict, offline_id: str | None = None) -> OfflineDeferred:
    """
    Queue a job-order creation for replay. Enqueueing the same offline id
    twice returns the existing entry.
    """
    def _op():
        identity = authorize(actor_id, "createJobOrder")
        fields = validate_job_payload(payload)

        oid = validate_offline_id(offline_id) if offline_id else generate_offline_id()
        existing = db.session.query(OfflineJobOrder).filter_by(offline_id=oid).first()
        if existing:
            return OfflineDeferred(offline_id=oid, queued_position=_queued_position(existing))

        holding_id = fields.pop("stock_holding_id")
        sticker_number = fields.pop("sticker_number")
        photo = fields.pop("photo")
        tag_number = fields.pop("tag_number")

        if holding_id is not None:
            holding = get_holding(holding_id)
            if local_available(holding) <= 0:
                raise InsufficientStock(f"Holding {holding.id} has no stickers left on this device")

        scheduled = fields.get("scheduled_at")
        fields["scheduled_at"] = scheduled.isoformat() if scheduled else None

        item = OfflineJobOrder(
            offline_id=oid,
            payload=fields,
            created_by_user_id=identity.actual.id,
            stock_holding_id=holding_id,
            sticker_number=sticker_number,
            photo=photo,
            tag_number=tag_number,
            sync_status=SYNC_STATUS_PENDING,
            attempts=0,
        )
        db.session.add(item)
        db.session.flush()

        change_bus.announce(change_bus.SYNC_QUEUE_UPDATED, entity_type="offline_job_order", entity_id=item.id,
                            actor_user_id=identity.actual.id)
        db.session.commit()
        return OfflineDeferred(offline_id=oid, queued_position=_queued_position(item))

    return run_with_retry(_op)


def submit_job_order(*, actor_id: int, payload: dict, offline_id: str | None = None):
    """Create canonically when online; queue and return OfflineDeferred when offline."""
    if is_online():
        from .job_order_service import create_job_order
        return create_job_order(actor_id=actor_id, payload=payload, offline_id=offline_id)
    return queue_offline_job_order(actor_id=actor_id, payload=payload, offline_id=offline_id)


# =============================================================================
# Replay
# =============================================================================

def _replay_fields(item: OfflineJobOrder) -> dict:
    fields = validate_job_payload(item.payload or {})
    fields["stock_holding_id"] = item.stock_holding_id
    fields["sticker_number"] = item.sticker_number
    fields["photo"] = item.photo
    fields["tag_number"] = item.tag_number
    return fields


def _replay_item(item_id: int) -> JobOrder | None:
    """
    Merge one queued item into canonical state: the single deterministic
    merge function for offline work. Returns the job order, or None when
    the item is no longer replayable.
    """
    def _op():
        item = db.session.query(OfflineJobOrder).filter_by(id=item_id).first()
        if item is None or item.sync_status not in _QUEUED_STATUSES:
            db.session.rollback()
            return None

        job = db.session.query(JobOrder).filter_by(offline_id=item.offline_id).first()
        if job is None:
            identity = authorize(item.created_by_user_id, "createJobOrder")
            job = _create_job_order_inner(identity, _replay_fields(item), offline_id=item.offline_id)

        now = utcnow()
        item.sync_status = SYNC_STATUS_SYNCED
        item.job_order_id = job.id
        item.synced_at = now
        item.last_attempt_at = now
        item.attempts = (item.attempts or 0) + 1
        item.error_message = None

        change_bus.announce(change_bus.SYNC_QUEUE_UPDATED, entity_type="offline_job_order", entity_id=item.id)
        db.session.commit()
        return job

    return run_with_retry(_op)


def _mark_failed(item_id: int, message: str) -> None:
    def _op():
        item = db.session.query(OfflineJobOrder).filter_by(id=item_id).first()
        item.sync_status = SYNC_STATUS_FAILED
        item.attempts = (item.attempts or 0) + 1
        item.last_attempt_at = utcnow()
        item.error_message = message
        change_bus.announce(change_bus.SYNC_QUEUE_UPDATED, entity_type="offline_job_order", entity_id=item.id)
        db.session.commit()

    run_with_retry(_op)


def _mark_syncing(item_ids: list[int], syncing: bool) -> None:
    def _op():
        state = _get_state()
        state.is_syncing = syncing
        if syncing:
            (
                db.session.query(OfflineJobOrder)
                .filter(OfflineJobOrder.id.in_(item_ids))
                .update({"sync_status": SYNC_STATUS_SYNCING}, synchronize_session=False)
            )
        else:
            state.last_sync_at = utcnow()
        db.session.commit()

    run_with_retry(_op)


def sync_offline_queue(*, actor_id: int | None = None) -> dict:
    """
    Replay every queued item in FIFO order. No-op while offline.

    Returns {"synced": n, "failed": n} and, when offline, "offline": True.
    """
    if actor_id is not None:
        authorize(actor_id, "manageStickers")
    if not is_online():
        return {"synced": 0, "failed": 0, "offline": True}

    item_ids = [
        row[0]
        for row in db.session.query(OfflineJobOrder.id)
        .filter(OfflineJobOrder.sync_status.in_(_QUEUED_STATUSES))
        .order_by(OfflineJobOrder.id.asc())
        .all()
    ]
    db.session.rollback()
    if not item_ids:
        return {"synced": 0, "failed": 0}

    _mark_syncing(item_ids, True)
    synced = failed = 0
    try:
        for item_id in item_ids:
            try:
                job = _replay_item(item_id)
            except DomainError as exc:
                failed += 1
                _mark_failed(item_id, str(exc))
                current_app.logger.warning("Offline item %s left queued: %s", item_id, exc)
                continue
            if job is not None:
                synced += 1
    finally:
        _mark_syncing(item_ids, False)

    if synced or failed:
        def _log():
            actor = get_user(actor_id) if actor_id else None
            log_activity(
                actor=actor,
                action_type=ACTION_SYNC,
                entity_type="SYNC_QUEUE",
                description=f"Offline queue replay: {synced} synced, {failed} failed",
                details={"synced": synced, "failed": failed},
                severity="medium" if failed else "low",
            )
            db.session.commit()

        run_with_retry(_log)

    current_app.logger.info("Offline queue replay finished: %s synced, %s failed", synced, failed)
    return {"synced": synced, "failed": failed}


# =============================================================================
# Manager reconciliation
# =============================================================================

def _get_open_item(offline_id: str) -> OfflineJobOrder:
    item = db.session.query(OfflineJobOrder).filter_by(offline_id=offline_id).first()
    if not item:
        raise NotFound("Offline job order", offline_id)
    if item.sync_status in (SYNC_STATUS_SYNCED, SYNC_STATUS_DISCARDED):
        raise Conflict(f"Offline job order {offline_id} is {item.sync_status} and cannot be changed")
    return item


def reassign_offline_allocation(offline_id: str, *, stock_holding_id: int | None, actor_id: int) -> OfflineJobOrder:
    """Point a queued item at another holding (or none) and requeue it."""
    def _op():
        identity = authorize(actor_id, "manageStickers")
        item = _get_open_item(offline_id)

        if stock_holding_id is not None:
            holding = get_holding(stock_holding_id)
            available = holding_balance(holding) - queued_claims(holding.id, exclude_item_id=item.id)
            if available <= 0:
                raise InsufficientStock(f"Holding {holding.id} has no stickers left")

        previous = item.stock_holding_id
        item.stock_holding_id = stock_holding_id
        item.sticker_number = None
        item.sync_status = SYNC_STATUS_PENDING
        item.error_message = None

        log_activity(
            actor=identity.actual,
            action_type=ACTION_UPDATE,
            entity_type="SYNC_QUEUE",
            entity_id=item.id,
            entity_name=item.offline_id,
            description=f"Reassigned offline allocation {item.offline_id} from holding {previous} to {stock_holding_id}",
        )
        change_bus.announce(change_bus.SYNC_QUEUE_UPDATED, entity_type="offline_job_order", entity_id=item.id,
                            actor_user_id=identity.actual.id)
        db.session.commit()
        return item

    return run_with_retry(_op)


def discard_offline_item(offline_id: str, reason: str, *, actor_id: int) -> OfflineJobOrder:
    def _op():
        identity = authorize(actor_id, "manageStickers")
        text = non_blank(reason, "reason")
        item = _get_open_item(offline_id)

        item.sync_status = SYNC_STATUS_DISCARDED
        item.discarded_by_user_id = identity.actual.id
        item.discard_reason = text

        log_activity(
            actor=identity.actual,
            action_type=ACTION_UPDATE,
            entity_type="SYNC_QUEUE",
            entity_id=item.id,
            entity_name=item.offline_id,
            description=f"Discarded offline job order {item.offline_id}: {text}",
            severity="medium",
        )
        change_bus.announce(change_bus.SYNC_QUEUE_UPDATED, entity_type="offline_job_order", entity_id=item.id,
                            actor_user_id=identity.actual.id)
        db.session.commit()
        return item

    return run_with_retry(_op)


def get_sync_status() -> dict:
    state = db.session.query(SyncState).filter_by(id=1).first()
    pending = (
        db.session.query(db.func.count(OfflineJobOrder.id))
        .filter(OfflineJobOrder.sync_status.in_(_QUEUED_STATUSES))
        .scalar()
    ) or 0
    failed = (
        db.session.query(db.func.count(OfflineJobOrder.id))
        .filter(OfflineJobOrder.sync_status == SYNC_STATUS_FAILED)
        .scalar()
    ) or 0
    return {
        "is_online": True if state is None else bool(state.is_online),
        "is_syncing": bool(state.is_syncing) if state else False,
        "last_sync_at": to_utc_z(state.last_sync_at) if state else None,
        "pending_count": pending,
        "failed_count": failed,
        "sync_interval_seconds": current_app.config["OFFLINE_SYNC_INTERVAL_SECONDS"],
    }


def validate_offline_id(value) -> str:
    oid = non_blank(value, "offline_id")
    if len(oid) > 64:
        raise ValidationError("offline_id is too long", field="offline_id")
    return oid
