# Overview: Read views recomputed from canonical tables on every call.

from __future__ import annotations

from ..extensions import db
from ..models import JobOrder, OfflineJobOrder, Payment, StickerLot, StockHolding, StockRequest, Tag, User
from ..models.inventory import HOLDER_INSPECTOR, REQUEST_STATUS_PENDING
from ..models.jobs import JOB_AWAITING_JOB_APPROVAL, JOB_AWAITING_REPORT_APPROVAL, PAYMENT_STATUS_PENDING
from ..models.sync import REPLAYABLE_SYNC_STATUSES, SYNC_STATUS_SYNCING
from ..models.tags import TAG_STATUS_AVAILABLE
from ..errors import NotFound
from .allocation_service import holding_balance
from .sync_service import queued_claims


def inspector_stock(inspector_id: int) -> dict:
    """Holdings of one inspector with canonical and device-local balances."""
    inspector = db.session.query(User).filter_by(id=inspector_id).first()
    if not inspector:
        raise NotFound("Inspector", inspector_id)

    holdings = (
        db.session.query(StockHolding)
        .filter(
            StockHolding.holder_type == HOLDER_INSPECTOR,
            StockHolding.holder_id == inspector_id,
            StockHolding.qty > 0,
        )
        .order_by(StockHolding.id.asc())
        .all()
    )

    rows = []
    for holding in holdings:
        balance = holding_balance(holding)
        queued = queued_claims(holding.id)
        row = holding.to_dict()
        row.update({
            "allocatable": balance,
            "queued_offline": queued,
            "local_available": max(balance - queued, 0),
        })
        rows.append(row)

    return {
        "inspector_id": inspector.id,
        "inspector_name": inspector.name,
        "holdings": rows,
        "total_qty": sum(h.qty for h in holdings),
        "total_allocatable": sum(r["allocatable"] for r in rows),
    }


def lot_availability() -> list[dict]:
    """Every lot with availability and the conservation check result."""
    held = dict(
        db.session.query(StockHolding.lot_id, db.func.coalesce(db.func.sum(StockHolding.qty), 0))
        .group_by(StockHolding.lot_id)
        .all()
    )
    out = []
    for lot in db.session.query(StickerLot).order_by(StickerLot.created_at.asc(), StickerLot.id.asc()).all():
        row = lot.to_dict()
        row["held_qty"] = int(held.get(lot.id, 0))
        row["balanced"] = (
            lot.total_qty == lot.issued_qty + lot.available_qty
            and row["held_qty"] == lot.issued_qty
        )
        out.append(row)
    return out


def pending_counts() -> dict:
    def _count(model, *criteria) -> int:
        return db.session.query(db.func.count(model.id)).filter(*criteria).scalar() or 0

    return {
        "pending_requests": _count(StockRequest, StockRequest.status == REQUEST_STATUS_PENDING),
        "awaiting_job_approval": _count(JobOrder, JobOrder.status == JOB_AWAITING_JOB_APPROVAL),
        "awaiting_report_approval": _count(JobOrder, JobOrder.status == JOB_AWAITING_REPORT_APPROVAL),
        "pending_payments": _count(Payment, Payment.status == PAYMENT_STATUS_PENDING),
        "available_tags": _count(Tag, Tag.status == TAG_STATUS_AVAILABLE),
        "offline_queue": _count(
            OfflineJobOrder,
            OfflineJobOrder.sync_status.in_(REPLAYABLE_SYNC_STATUSES + (SYNC_STATUS_SYNCING,)),
        ),
    }
