# Overview: Allocation engine: issuance, transfers, stock requests and sticker usage.

"""
Sticker allocation engine.

QUANTITY MODEL:
- Issuance debits the lot (compare-and-set, see lot_service.debit_lot) and
  credits a StockHolding with the same quantity and serials.
- Transfers move quantity and serials between holdings of the same lot;
  lot totals are untouched, so sum(holdings.qty) == lot.issued_qty holds.
- Allocation onto a job order creates a StickerUsage. Quantity was already
  debited at issuance; a usage only reduces the holding's allocatable
  balance (qty - active usages).

Every public operation runs in one transaction: any failure rolls back
the whole operation, so no partial quantity movement is ever committed.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import JobOrder, Region, StickerLot, StickerUsage, StockHolding, StockRequest, StockTransfer, User
from ..models.inventory import (
    ACTIVE_USAGE_STATUSES,
    HOLDER_INSPECTOR,
    HOLDER_REGION,
    HOLDER_TYPES,
    LOT_STATUS_ACTIVE,
    REQUEST_STATUS_APPROVED,
    REQUEST_STATUS_PENDING,
    REQUEST_STATUS_REJECTED,
    STICKER_SIZES,
    TRANSFER_STATUS_COMPLETED,
    USAGE_STATUS_ALLOCATED,
    USAGE_STATUS_CANCELLED,
    USAGE_STATUS_REMOVED,
    USAGE_STATUS_RETURNED,
    USAGE_STATUS_USED,
)
from ..models.jobs import JOB_PAID, JOB_REJECTED
from ..permissions import ROLE_INSPECTOR
from ..errors import Conflict, InsufficientStock, NotFound, PermissionDenied, ValidationError
from ..time_utils import utcnow
from ..validation import choice, non_blank, positive_int
from . import change_bus, notification_service
from .activity_service import (
    ACTION_APPROVE,
    ACTION_ASSIGN,
    ACTION_CREATE,
    ACTION_REJECT,
    ACTION_TRANSFER,
    ACTION_UPDATE,
    log_activity,
    log_identity,
)
from .concurrency import lock_for_update, run_with_retry
from .lot_service import debit_lot, get_lot, get_lot_by_number
from .permission_service import authorize, has_capability


# =============================================================================
# Holders and holdings
# =============================================================================

def resolve_holder(holder_type: str, holder_id) -> tuple[str, int, str]:
    """Validate a holder reference; returns (type, id, display name)."""
    holder_type = choice(holder_type, HOLDER_TYPES, "holder_type")
    if holder_id is None:
        raise ValidationError("holder_id is required", field="holder_id")

    if holder_type == HOLDER_REGION:
        region = db.session.query(Region).filter_by(id=holder_id).first()
        if not region:
            raise NotFound("Region", holder_id)
        return holder_type, region.id, region.name

    user = db.session.query(User).filter_by(id=holder_id).first()
    if not user or not user.is_active:
        raise NotFound("Inspector", holder_id)
    return holder_type, user.id, user.name


def get_holding(holding_id: int) -> StockHolding:
    holding = db.session.query(StockHolding).filter_by(id=holding_id).first()
    if not holding:
        raise NotFound("Stock holding", holding_id)
    return holding


def active_usage_count(holding: StockHolding) -> int:
    return (
        db.session.query(db.func.count(StickerUsage.id))
        .filter(
            StickerUsage.stock_holding_id == holding.id,
            StickerUsage.status.in_(ACTIVE_USAGE_STATUSES),
        )
        .scalar()
    ) or 0


def holding_balance(holding: StockHolding) -> int:
    """Allocatable stickers left on a holding."""
    return max(holding.qty - active_usage_count(holding), 0)


def _used_serials(holding: StockHolding) -> set[str]:
    rows = (
        db.session.query(StickerUsage.sticker_number)
        .filter(
            StickerUsage.stock_holding_id == holding.id,
            StickerUsage.status.in_(ACTIVE_USAGE_STATUSES),
            StickerUsage.sticker_number.isnot(None),
        )
        .all()
    )
    return {r[0] for r in rows}


def list_holdings(
    *,
    holder_type: str | None = None,
    holder_id: int | None = None,
    lot_number: str | None = None,
    include_empty: bool = False,
) -> list[StockHolding]:
    query = db.session.query(StockHolding)
    if holder_type:
        query = query.filter(StockHolding.holder_type == holder_type)
    if holder_id is not None:
        query = query.filter(StockHolding.holder_id == holder_id)
    if lot_number:
        query = query.filter(StockHolding.lot_number == lot_number)
    if not include_empty:
        query = query.filter(StockHolding.qty > 0)
    return query.order_by(StockHolding.id.asc()).all()


def _credit_holding(
    lot: StickerLot,
    *,
    holder_type: str,
    holder_id: int,
    holder_name: str,
    qty: int,
    serials: list[str],
    actor_id: int | None,
    source_request_id: int | None = None,
    source_transfer_id: int | None = None,
    merge: bool = False,
) -> StockHolding:
    holding = None
    if merge:
        holding = lock_for_update(
            db.session.query(StockHolding).filter_by(
                lot_id=lot.id, holder_type=holder_type, holder_id=holder_id
            ).order_by(StockHolding.id.asc())
        ).first()

    if holding is None:
        holding = StockHolding(
            lot_id=lot.id,
            lot_number=lot.lot_number,
            size=lot.size,
            holder_type=holder_type,
            holder_id=holder_id,
            holder_name=holder_name,
            qty=qty,
            sequence_numbers=list(serials),
            issued_at=utcnow(),
            issued_by_user_id=actor_id,
            source_request_id=source_request_id,
            source_transfer_id=source_transfer_id,
        )
        db.session.add(holding)
    else:
        holding.qty = holding.qty + qty
        # JSON columns are replaced, never mutated in place
        holding.sequence_numbers = list(holding.sequence_numbers or []) + list(serials)
    db.session.flush()
    return holding


# =============================================================================
# Issuance
# =============================================================================

def _issue_stock_inner(
    lot: StickerLot,
    *,
    holder_type: str,
    holder_id: int,
    holder_name: str,
    qty: int,
    actor_id: int | None,
    source_request_id: int | None = None,
) -> StockHolding:
    """Debit the lot and credit a new holding. No commit."""
    serials = debit_lot(lot, qty)
    holding = _credit_holding(
        lot,
        holder_type=holder_type,
        holder_id=holder_id,
        holder_name=holder_name,
        qty=qty,
        serials=serials,
        actor_id=actor_id,
        source_request_id=source_request_id,
    )
    change_bus.announce(
        change_bus.STOCK_UPDATED,
        entity_type="stock_holding",
        entity_id=holding.id,
        actor_user_id=actor_id,
    )
    return holding


def issue_stock(*, lot_id: int, holder_type: str, holder_id, qty, actor_id: int) -> StockHolding:
    """
    Issue `qty` stickers from a lot to a holder.

    Fails InsufficientStock (lot unchanged) when the lot cannot cover qty.
    """
    def _op():
        identity = authorize(actor_id, "manageStickers")
        amount = positive_int(qty, "qty")
        h_type, h_id, h_name = resolve_holder(holder_type, holder_id)
        lot = get_lot(lot_id)

        holding = _issue_stock_inner(
            lot,
            holder_type=h_type,
            holder_id=h_id,
            holder_name=h_name,
            qty=amount,
            actor_id=identity.actual.id,
        )

        log_activity(
            actor=identity.actual,
            action_type=ACTION_ASSIGN,
            entity_type="STICKER_LOT",
            entity_id=lot.id,
            entity_name=lot.lot_number,
            description=f"Issued {amount} stickers from lot {lot.lot_number} to {h_name}",
            details={"holding_id": holding.id, "holder_type": h_type, "holder_id": h_id, "qty": amount},
        )
        db.session.commit()
        return holding

    return run_with_retry(_op)


# =============================================================================
# Transfers
# =============================================================================

def transfer_stock(
    *,
    from_holder_type: str,
    from_holder_id,
    to_holder_type: str,
    to_holder_id,
    lot_number: str,
    qty,
    actor_id: int,
    note: str | None = None,
) -> StockTransfer:
    """
    Move `qty` of one lot from one holder to another.

    The source must hold at least `qty` unallocated stickers of the lot
    (InsufficientStock otherwise). Oldest holdings are drawn first and
    unallocated serials move with the quantity. Lot totals never change.
    """
    def _op():
        identity = authorize(actor_id, "manageStickers")
        amount = positive_int(qty, "qty")
        number = non_blank(lot_number, "lot_number")
        src_type, src_id, src_name = resolve_holder(from_holder_type, from_holder_id)
        dst_type, dst_id, dst_name = resolve_holder(to_holder_type, to_holder_id)
        if (src_type, src_id) == (dst_type, dst_id):
            raise ValidationError("Source and destination holders must differ", field="to_holder_id")

        lot = get_lot_by_number(number)

        sources = lock_for_update(
            db.session.query(StockHolding)
            .filter(
                StockHolding.lot_id == lot.id,
                StockHolding.holder_type == src_type,
                StockHolding.holder_id == src_id,
                StockHolding.qty > 0,
            )
            .order_by(StockHolding.id.asc())
        ).all()

        balances = [(h, holding_balance(h)) for h in sources]
        movable = sum(b for _, b in balances)
        if movable < amount:
            raise InsufficientStock(
                f"{src_name} holds {movable} unallocated stickers of lot {number}, {amount} requested"
            )

        remaining = amount
        moved_serials: list[str] = []
        for holding, balance in balances:
            if remaining == 0:
                break
            take = min(balance, remaining)
            if take == 0:
                continue
            in_use = _used_serials(holding)
            free = [s for s in (holding.sequence_numbers or []) if s not in in_use]
            taking = free[-take:] if free else []
            kept = [s for s in (holding.sequence_numbers or []) if s not in set(taking)]

            holding.qty = holding.qty - take
            holding.sequence_numbers = kept
            moved_serials.extend(taking)
            remaining -= take

        transfer = StockTransfer(
            from_holder_type=src_type,
            from_holder_id=src_id,
            to_holder_type=dst_type,
            to_holder_id=dst_id,
            lot_number=number,
            qty=amount,
            status=TRANSFER_STATUS_COMPLETED,
            note=note,
            transferred_by_user_id=identity.actual.id,
            transferred_at=utcnow(),
        )
        db.session.add(transfer)
        db.session.flush()

        _credit_holding(
            lot,
            holder_type=dst_type,
            holder_id=dst_id,
            holder_name=dst_name,
            qty=amount,
            serials=sorted(moved_serials),
            actor_id=identity.actual.id,
            source_transfer_id=transfer.id,
            merge=True,
        )

        log_activity(
            actor=identity.actual,
            action_type=ACTION_TRANSFER,
            entity_type="STOCK_TRANSFER",
            entity_id=transfer.id,
            entity_name=number,
            description=f"Transferred {amount} stickers of lot {number} from {src_name} to {dst_name}",
            details={"serials": sorted(moved_serials)},
        )
        change_bus.announce(
            change_bus.STOCK_UPDATED,
            entity_type="stock_transfer",
            entity_id=transfer.id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()
        return transfer

    return run_with_retry(_op)


def list_transfers(*, lot_number: str | None = None, holder_id: int | None = None) -> list[StockTransfer]:
    query = db.session.query(StockTransfer)
    if lot_number:
        query = query.filter(StockTransfer.lot_number == lot_number)
    if holder_id is not None:
        query = query.filter(
            db.or_(StockTransfer.from_holder_id == holder_id, StockTransfer.to_holder_id == holder_id)
        )
    return query.order_by(StockTransfer.id.desc()).all()


# =============================================================================
# Stock requests
# =============================================================================

def get_request(request_id: int) -> StockRequest:
    req = db.session.query(StockRequest).filter_by(id=request_id).first()
    if not req:
        raise NotFound("Request", request_id)
    return req


def list_requests(*, status: str | None = None, requester_id: int | None = None) -> list[StockRequest]:
    query = db.session.query(StockRequest)
    if status:
        query = query.filter(StockRequest.status == status)
    if requester_id is not None:
        query = query.filter(StockRequest.requester_id == requester_id)
    return query.order_by(StockRequest.created_at.asc(), StockRequest.id.asc()).all()


def submit_request(
    *,
    actor_id: int,
    qty,
    requester_id: int | None = None,
    requester_type: str = HOLDER_INSPECTOR,
    size: str | None = None,
    lot_number_preference: str | None = None,
) -> StockRequest:
    """
    Create a PENDING request. The requester identity is mandatory and
    never inferred: it defaults to the actor for inspector requests and
    must be given explicitly for region requests.
    """
    def _op():
        identity = authorize(actor_id)
        amount = positive_int(qty, "qty")
        r_type = choice(requester_type, HOLDER_TYPES, "requester_type")
        if size is not None:
            choice(size, STICKER_SIZES, "size")

        r_id = requester_id
        if r_id is None:
            if r_type == HOLDER_REGION:
                raise ValidationError("requester_id is required for region requests", field="requester_id")
            r_id = identity.actual.id
        r_type, r_id, r_name = resolve_holder(r_type, r_id)

        acting_for_self = r_type == HOLDER_INSPECTOR and r_id == identity.actual.id
        if not acting_for_self and not has_capability(identity.actual, "manageStickers"):
            raise PermissionDenied(
                "Only the requester or a sticker manager may submit this request",
                capability="manageStickers",
            )

        preference = (lot_number_preference or "").strip() or None

        req = StockRequest(
            requester_id=r_id,
            requester_name=r_name,
            requester_type=r_type,
            qty=amount,
            size=size,
            lot_number_preference=preference,
            status=REQUEST_STATUS_PENDING,
        )
        db.session.add(req)
        db.session.flush()

        log_activity(
            actor=identity.actual,
            action_type=ACTION_CREATE,
            entity_type="STOCK_REQUEST",
            entity_id=req.id,
            entity_name=r_name,
            description=f"{r_name} requested {amount} stickers",
            details={"lot_number_preference": preference, "size": size},
        )
        change_bus.announce(
            change_bus.REQUESTS_UPDATED,
            entity_type="stock_request",
            entity_id=req.id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()
        return req

    return run_with_retry(_op)


def _resolve_requester(req: StockRequest) -> tuple[str, int, str]:
    """
    Holder for an approved request. Legacy rows without requester_id may
    be matched by exact inspector name when ALLOW_REQUESTER_NAME_FALLBACK
    is set; the match must be unique.
    """
    if req.requester_id is not None:
        return resolve_holder(req.requester_type or HOLDER_INSPECTOR, req.requester_id)

    if not current_app.config.get("ALLOW_REQUESTER_NAME_FALLBACK") or not req.requester_name:
        raise ValidationError(f"Request {req.id} has no requester identity", field="requester_id")

    matches = [
        u for u in db.session.query(User).filter(User.name == req.requester_name, User.is_active.is_(True)).all()
        if u.has_role(ROLE_INSPECTOR)
    ]
    if len(matches) != 1:
        raise ValidationError(
            f"Request {req.id}: requester '{req.requester_name}' matches {len(matches)} inspectors",
            field="requester_id",
        )
    current_app.logger.warning("Request %s resolved requester by name (legacy row)", req.id)
    return HOLDER_INSPECTOR, matches[0].id, matches[0].name


def candidate_lots(qty: int, *, size: str | None = None, preference: str | None = None) -> list[StickerLot]:
    """
    Lots to try, in order: the preferred lot when it can cover qty, then
    every ACTIVE lot in creation order with available_qty >= qty.
    """
    query = db.session.query(StickerLot).filter(
        StickerLot.status == LOT_STATUS_ACTIVE,
        StickerLot.available_qty >= qty,
    )
    if size:
        query = query.filter(StickerLot.size == size)
    lots = query.order_by(StickerLot.created_at.asc(), StickerLot.id.asc()).all()

    if preference:
        preferred = [lot for lot in lots if lot.lot_number == preference]
        return preferred + [lot for lot in lots if lot.lot_number != preference]
    return lots


def approve_request(request_id: int, *, actor_id: int, on_behalf_of: int | None = None) -> StockRequest:
    """
    Resolve a PENDING request by issuing from the first lot that can cover it.

    Fails InsufficientStock and leaves the request PENDING when no lot can.
    """
    def _op():
        identity = authorize(actor_id, "manageStickers", on_behalf_of=on_behalf_of)
        req = lock_for_update(db.session.query(StockRequest).filter_by(id=request_id)).first()
        if not req:
            raise NotFound("Request", request_id)
        if req.status != REQUEST_STATUS_PENDING:
            raise Conflict(f"Request {req.id} is already {req.status}")

        h_type, h_id, h_name = _resolve_requester(req)

        holding = None
        for lot in candidate_lots(req.qty, size=req.size, preference=req.lot_number_preference):
            try:
                holding = _issue_stock_inner(
                    lot,
                    holder_type=h_type,
                    holder_id=h_id,
                    holder_name=h_name,
                    qty=req.qty,
                    actor_id=identity.actual.id,
                    source_request_id=req.id,
                )
            except InsufficientStock:
                # Lost the lot to a concurrent debit; try the next one
                continue
            break

        if holding is None:
            raise InsufficientStock(f"No active lot can cover {req.qty} stickers for request {req.id}")

        req.status = REQUEST_STATUS_APPROVED
        req.approved_by_user_id = identity.actual.id
        req.approved_at = utcnow()
        req.fulfilled_lot_id = holding.lot_id
        if req.requester_id is None:
            req.requester_id = h_id

        log_identity(
            identity,
            action_type=ACTION_APPROVE,
            entity_type="STOCK_REQUEST",
            entity_id=req.id,
            entity_name=h_name,
            description=f"Approved request for {req.qty} stickers from lot {holding.lot_number}",
            details={"holding_id": holding.id, "lot_number": holding.lot_number},
        )
        if h_type == HOLDER_INSPECTOR:
            notification_service.notify_user(
                h_id,
                title="Sticker request approved",
                message=f"Your request for {req.qty} stickers was approved from lot {holding.lot_number}.",
                notification_type="approval",
            )
        change_bus.announce(
            change_bus.REQUESTS_UPDATED,
            entity_type="stock_request",
            entity_id=req.id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()
        return req

    return run_with_retry(_op)


def reject_request(request_id: int, reason: str, *, actor_id: int, on_behalf_of: int | None = None) -> StockRequest:
    def _op():
        identity = authorize(actor_id, "manageStickers", on_behalf_of=on_behalf_of)
        text = non_blank(reason, "reason")
        req = lock_for_update(db.session.query(StockRequest).filter_by(id=request_id)).first()
        if not req:
            raise NotFound("Request", request_id)
        if req.status != REQUEST_STATUS_PENDING:
            raise Conflict(f"Request {req.id} is already {req.status}")

        req.status = REQUEST_STATUS_REJECTED
        req.rejected_by_user_id = identity.actual.id
        req.rejected_at = utcnow()
        req.rejection_reason = text

        log_identity(
            identity,
            action_type=ACTION_REJECT,
            entity_type="STOCK_REQUEST",
            entity_id=req.id,
            entity_name=req.requester_name,
            description=f"Rejected request for {req.qty} stickers: {text}",
        )
        if req.requester_type == HOLDER_INSPECTOR:
            notification_service.notify_user(
                req.requester_id,
                title="Sticker request rejected",
                message=f"Your request for {req.qty} stickers was rejected: {text}",
                notification_type="approval",
            )
        change_bus.announce(
            change_bus.REQUESTS_UPDATED,
            entity_type="stock_request",
            entity_id=req.id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()
        return req

    return run_with_retry(_op)


# =============================================================================
# Sticker usage (allocation onto job orders)
# =============================================================================

def _can_use_holding(user: User, holding: StockHolding) -> bool:
    if holding.holder_type == HOLDER_INSPECTOR and holding.holder_id == user.id:
        return True
    if holding.holder_type == HOLDER_REGION and user.region_id == holding.holder_id:
        return True
    return has_capability(user, "manageStickers")


def _allocate_sticker_inner(
    holding: StockHolding,
    job: JobOrder,
    *,
    actor: User,
    sticker_number: str | None = None,
    photo: str | None = None,
) -> StickerUsage:
    """Attach one sticker of `holding` to `job`. No commit."""
    if not _can_use_holding(actor, holding):
        raise PermissionDenied(f"{actor.name} cannot allocate from holding {holding.id}", capability="manageStickers")
    if job.status in (JOB_REJECTED, JOB_PAID):
        raise Conflict(f"Job order {job.job_number} is {job.status}; stickers cannot be allocated")

    existing = (
        db.session.query(StickerUsage.id)
        .filter(StickerUsage.job_order_id == job.id, StickerUsage.status.in_(ACTIVE_USAGE_STATUSES))
        .first()
    )
    if existing:
        raise Conflict(f"Job order {job.job_number} already has a sticker allocated")

    if holding_balance(holding) <= 0:
        raise InsufficientStock(f"Holding {holding.id} (lot {holding.lot_number}) has no stickers left")

    serials = list(holding.sequence_numbers or [])
    in_use = _used_serials(holding)
    if sticker_number:
        sticker_number = str(sticker_number).strip()
        if serials and sticker_number not in serials:
            raise ValidationError(
                f"Sticker {sticker_number} is not part of holding {holding.id}",
                field="sticker_number",
            )
        taken = (
            db.session.query(StickerUsage.id)
            .filter(
                StickerUsage.lot_number == holding.lot_number,
                StickerUsage.sticker_number == sticker_number,
                StickerUsage.status.in_(ACTIVE_USAGE_STATUSES),
            )
            .first()
        )
        if taken:
            raise Conflict(f"Sticker {sticker_number} of lot {holding.lot_number} is already allocated")
    else:
        sticker_number = next((s for s in serials if s not in in_use), None)

    usage = StickerUsage(
        stock_holding_id=holding.id,
        lot_number=holding.lot_number,
        sticker_number=sticker_number,
        size=holding.size,
        job_order_id=job.id,
        status=USAGE_STATUS_ALLOCATED,
        photo=photo,
        allocated_by_user_id=actor.id,
        allocated_at=utcnow(),
    )
    db.session.add(usage)
    db.session.flush()

    change_bus.announce(
        change_bus.STOCK_UPDATED,
        entity_type="sticker_usage",
        entity_id=usage.id,
        actor_user_id=actor.id,
    )
    return usage


def allocate_sticker_to_job_order(
    *,
    stock_holding_id: int,
    job_order_id: int,
    actor_id: int,
    sticker_number: str | None = None,
    photo: str | None = None,
) -> StickerUsage:
    def _op():
        identity = authorize(actor_id)
        holding = lock_for_update(db.session.query(StockHolding).filter_by(id=stock_holding_id)).first()
        if not holding:
            raise NotFound("Stock holding", stock_holding_id)
        job = db.session.query(JobOrder).filter_by(id=job_order_id).first()
        if not job:
            raise NotFound("Job order", job_order_id)

        usage = _allocate_sticker_inner(
            holding, job, actor=identity.actual, sticker_number=sticker_number, photo=photo
        )
        log_activity(
            actor=identity.actual,
            action_type=ACTION_ASSIGN,
            entity_type="JOB_ORDER",
            entity_id=job.id,
            entity_name=job.job_number,
            description=f"Allocated sticker {usage.sticker_number or '(unnumbered)'} of lot {usage.lot_number}",
        )
        change_bus.announce(
            change_bus.JOB_ORDERS_UPDATED,
            entity_type="job_order",
            entity_id=job.id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()
        return usage

    return run_with_retry(_op)


def _get_usage_for_update(usage_id: int) -> StickerUsage:
    usage = lock_for_update(db.session.query(StickerUsage).filter_by(id=usage_id)).first()
    if not usage:
        raise NotFound("Sticker usage", usage_id)
    return usage


def mark_sticker_used(usage_id: int, *, actor_id: int) -> StickerUsage:
    def _op():
        identity = authorize(actor_id)
        usage = _get_usage_for_update(usage_id)
        if usage.status != USAGE_STATUS_ALLOCATED:
            raise Conflict(f"Sticker usage {usage.id} is {usage.status}, expected {USAGE_STATUS_ALLOCATED}")
        usage.status = USAGE_STATUS_USED
        usage.used_at = utcnow()

        log_activity(
            actor=identity.actual,
            action_type=ACTION_UPDATE,
            entity_type="STICKER_USAGE",
            entity_id=usage.id,
            entity_name=usage.sticker_number,
            description=f"Sticker {usage.sticker_number or usage.id} applied",
        )
        change_bus.announce(
            change_bus.STOCK_UPDATED,
            entity_type="sticker_usage",
            entity_id=usage.id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()
        return usage

    return run_with_retry(_op)


def release_sticker(usage_id: int, *, actor_id: int) -> StickerUsage:
    """Return an allocated, not yet applied sticker to its holding."""
    def _op():
        identity = authorize(actor_id)
        usage = _get_usage_for_update(usage_id)
        if usage.status != USAGE_STATUS_ALLOCATED:
            raise Conflict(f"Sticker usage {usage.id} is {usage.status}; only allocated stickers can be returned")
        usage.status = USAGE_STATUS_RETURNED
        usage.returned_at = utcnow()

        log_activity(
            actor=identity.actual,
            action_type=ACTION_UPDATE,
            entity_type="STICKER_USAGE",
            entity_id=usage.id,
            entity_name=usage.sticker_number,
            description=f"Sticker {usage.sticker_number or usage.id} returned to holding {usage.stock_holding_id}",
        )
        change_bus.announce(
            change_bus.STOCK_UPDATED,
            entity_type="sticker_usage",
            entity_id=usage.id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()
        return usage

    return run_with_retry(_op)


def _cancel_job_stickers_inner(job: JobOrder) -> list[StickerUsage]:
    """Release stickers allocated to a job that will never run. No commit."""
    usages = (
        db.session.query(StickerUsage)
        .filter(StickerUsage.job_order_id == job.id, StickerUsage.status == USAGE_STATUS_ALLOCATED)
        .all()
    )
    for usage in usages:
        usage.status = USAGE_STATUS_CANCELLED
    return usages


def report_sticker_removal(
    *,
    actor_id: int,
    usage_id: int | None = None,
    job_order_id: int | None = None,
) -> StickerUsage:
    """
    Record that an applied sticker was removed from the equipment.

    Reporting an already removed sticker returns it unchanged.
    """
    def _op():
        identity = authorize(actor_id)
        if usage_id is not None:
            usage = _get_usage_for_update(usage_id)
        elif job_order_id is not None:
            usage = lock_for_update(
                db.session.query(StickerUsage)
                .filter(StickerUsage.job_order_id == job_order_id)
                .order_by(StickerUsage.id.desc())
            ).first()
            if not usage:
                raise NotFound("Sticker usage for job order", job_order_id)
        else:
            raise ValidationError("usage_id or job_order_id is required", field="usage_id")

        if usage.status == USAGE_STATUS_REMOVED:
            db.session.rollback()
            return usage
        if usage.status not in ACTIVE_USAGE_STATUSES:
            raise Conflict(f"Sticker usage {usage.id} is {usage.status}; nothing to remove")

        usage.status = USAGE_STATUS_REMOVED
        usage.removed_at = utcnow()
        usage.removed_by_user_id = identity.actual.id

        log_activity(
            actor=identity.actual,
            action_type=ACTION_UPDATE,
            entity_type="STICKER_USAGE",
            entity_id=usage.id,
            entity_name=usage.sticker_number,
            description=f"Sticker {usage.sticker_number or usage.id} reported removed",
            severity="high",
        )
        change_bus.announce(
            change_bus.STOCK_UPDATED,
            entity_type="sticker_usage",
            entity_id=usage.id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()
        return usage

    return run_with_retry(_op)


def list_usages(
    *,
    job_order_id: int | None = None,
    holding_id: int | None = None,
    inspector_id: int | None = None,
    status: str | None = None,
) -> list[StickerUsage]:
    query = db.session.query(StickerUsage)
    if job_order_id is not None:
        query = query.filter(StickerUsage.job_order_id == job_order_id)
    if holding_id is not None:
        query = query.filter(StickerUsage.stock_holding_id == holding_id)
    if inspector_id is not None:
        query = query.join(StockHolding, StockHolding.id == StickerUsage.stock_holding_id).filter(
            StockHolding.holder_type == HOLDER_INSPECTOR,
            StockHolding.holder_id == inspector_id,
        )
    if status:
        query = query.filter(StickerUsage.status == status)
    return query.order_by(StickerUsage.id.asc()).all()
