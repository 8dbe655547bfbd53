# Overview: Sticker lot store; the single allocation authority for lot quantities.

"""
Lot invariants:

- available_qty = total_qty - issued_qty >= 0 (also enforced by CHECK constraints)
- status is DEPLETED exactly when available_qty reaches 0
- Serial ranges of lots of the same size never overlap

CONCURRENCY: every debit is one conditional UPDATE guarded by the lot's
version_id (compare-and-set). Two approvals racing for the same lot
cannot both succeed on stale availability; the loser re-reads and
either retries or fails with InsufficientStock.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import case

from ..extensions import db
from ..models import StickerLot, StockHolding
from ..models.inventory import (
    LOT_STATUS_ACTIVE,
    LOT_STATUS_ARCHIVED,
    LOT_STATUS_DEPLETED,
    STICKER_SIZES,
)
from ..errors import Conflict, InsufficientStock, NotFound, ValidationError
from ..validation import choice, non_blank, optional_int, positive_int
from . import change_bus
from .activity_service import ACTION_CREATE, ACTION_UPDATE, ACTION_SYSTEM_INFO, log_activity
from .concurrency import compare_and_set, lock_for_update, run_with_retry
from .permission_service import authorize


def format_serial(number: int) -> str:
    return f"{number:05d}"


def get_lot(lot_id: int) -> StickerLot:
    lot = db.session.query(StickerLot).filter_by(id=lot_id).first()
    if not lot:
        raise NotFound("Lot", lot_id)
    return lot


def get_lot_by_number(lot_number: str) -> StickerLot:
    lot = db.session.query(StickerLot).filter_by(lot_number=lot_number).first()
    if not lot:
        raise NotFound("Lot", lot_number)
    return lot


def list_lots(*, status: str | None = None, size: str | None = None) -> list[StickerLot]:
    query = db.session.query(StickerLot)
    if status:
        query = query.filter(StickerLot.status == status)
    if size:
        query = query.filter(StickerLot.size == size)
    return query.order_by(StickerLot.created_at.asc(), StickerLot.id.asc()).all()


def next_start_sequence(size: str) -> int:
    """First free serial after every existing lot of this size."""
    floor = current_app.config["STICKER_SEQUENCE_MIN"]
    highest = (
        db.session.query(db.func.max(StickerLot.end_sequence))
        .filter(StickerLot.size == size)
        .scalar()
    )
    if highest is None:
        highest = floor - 1
    return max(highest + 1, floor)


def _check_range(size: str, start: int, end: int) -> None:
    low = current_app.config["STICKER_SEQUENCE_MIN"]
    high = current_app.config["STICKER_SEQUENCE_MAX"]
    if start < low:
        raise ValidationError(f"start_sequence must be at least {low}", field="start_sequence")
    if end > high:
        raise ValidationError(
            f"Serial range {format_serial(start)}-{end} exceeds {high}",
            field="qty",
        )

    overlapping = (
        db.session.query(StickerLot)
        .filter(
            StickerLot.size == size,
            StickerLot.start_sequence <= end,
            StickerLot.end_sequence >= start,
        )
        .first()
    )
    if overlapping:
        raise ValidationError(
            f"Serial range {format_serial(start)}-{format_serial(end)} overlaps lot "
            f"{overlapping.lot_number} ({format_serial(overlapping.start_sequence)}-"
            f"{format_serial(overlapping.end_sequence)})",
            field="start_sequence",
        )


def create_lot(
    *,
    lot_number: str,
    size: str,
    qty,
    actor_id: int,
    start_sequence=None,
) -> StickerLot:
    def _op():
        identity = authorize(actor_id, "manageStickers")

        number = non_blank(lot_number, "lot_number")
        lot_size = choice(size, STICKER_SIZES, "size")
        total = positive_int(qty, "qty")
        start = optional_int(start_sequence, "start_sequence")

        if db.session.query(StickerLot.id).filter_by(lot_number=number).first():
            raise ValidationError(f"Lot number {number} already exists", field="lot_number")

        if start is None:
            start = next_start_sequence(lot_size)
        end = start + total - 1
        _check_range(lot_size, start, end)

        lot = StickerLot(
            lot_number=number,
            size=lot_size,
            total_qty=total,
            issued_qty=0,
            available_qty=total,
            status=LOT_STATUS_ACTIVE,
            start_sequence=start,
            end_sequence=end,
            current_sequence=start,
            version_id=1,
            created_by_user_id=identity.actual.id,
        )
        db.session.add(lot)
        db.session.flush()

        log_activity(
            actor=identity.actual,
            action_type=ACTION_CREATE,
            entity_type="STICKER_LOT",
            entity_id=lot.id,
            entity_name=lot.lot_number,
            description=f"Created {lot_size} sticker lot {number} ({total} stickers)",
            details={"start_sequence": start, "end_sequence": end},
        )
        change_bus.announce(
            change_bus.STOCK_UPDATED,
            entity_type="lot",
            entity_id=lot.id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()
        return lot

    return run_with_retry(_op)


def archive_lot(lot_id: int, *, actor_id: int) -> StickerLot:
    def _op():
        identity = authorize(actor_id, "manageStickers")
        lot = lock_for_update(db.session.query(StickerLot).filter_by(id=lot_id)).first()
        if not lot:
            raise NotFound("Lot", lot_id)
        if lot.status == LOT_STATUS_ARCHIVED:
            raise Conflict(f"Lot {lot.lot_number} is already archived")

        if not compare_and_set(
            StickerLot,
            row_id=lot.id,
            expected_version=lot.version_id,
            values={"status": LOT_STATUS_ARCHIVED},
        ):
            raise Conflict(f"Lot {lot.lot_number} was modified concurrently; retry")
        db.session.refresh(lot)

        log_activity(
            actor=identity.actual,
            action_type=ACTION_UPDATE,
            entity_type="STICKER_LOT",
            entity_id=lot.id,
            entity_name=lot.lot_number,
            description=f"Archived sticker lot {lot.lot_number}",
        )
        change_bus.announce(
            change_bus.STOCK_UPDATED,
            entity_type="lot",
            entity_id=lot.id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()
        return lot

    return run_with_retry(_op)


def debit_lot(lot: StickerLot, qty: int) -> list[str]:
    """
    Take `qty` stickers out of `lot` with compare-and-set.

    Returns the serials handed out (next `qty` from current_sequence).
    Raises InsufficientStock when the lot cannot cover `qty` (or is no
    longer ACTIVE) and Conflict when every attempt lost a race.
    Does not commit.
    """
    if qty <= 0:
        raise ValidationError("qty must be positive", field="qty")

    attempts = current_app.config["ALLOCATION_RETRY_ATTEMPTS"]
    for attempt in range(attempts):
        if lot.status != LOT_STATUS_ACTIVE or lot.available_qty < qty:
            raise InsufficientStock(
                f"Lot {lot.lot_number} has {lot.available_qty} available, {qty} requested"
            )

        first_serial = lot.current_sequence
        remaining = StickerLot.available_qty - qty
        swapped = compare_and_set(
            StickerLot,
            row_id=lot.id,
            expected_version=lot.version_id,
            conditions=(
                StickerLot.status == LOT_STATUS_ACTIVE,
                StickerLot.available_qty >= qty,
            ),
            values={
                "issued_qty": StickerLot.issued_qty + qty,
                "available_qty": remaining,
                "current_sequence": StickerLot.current_sequence + qty,
                "status": case((remaining == 0, LOT_STATUS_DEPLETED), else_=StickerLot.status),
            },
        )
        db.session.refresh(lot)
        if swapped:
            return [format_serial(n) for n in range(first_serial, first_serial + qty)]

        current_app.logger.info(
            "Lot %s changed during debit (attempt %s/%s)", lot.lot_number, attempt + 1, attempts
        )

    raise Conflict(f"Lot {lot.lot_number} is being modified concurrently; retry")


def reconcile_lots(*, actor_id: int | None = None, fix: bool = True) -> list[dict]:
    """
    Conservation audit: recompute issued_qty from holdings and re-derive
    availability and status. Returns one entry per lot that disagreed.
    """
    def _op():
        actor = authorize(actor_id, "manageStickers").actual if actor_id else None

        issued_by_lot = dict(
            db.session.query(StockHolding.lot_id, db.func.coalesce(db.func.sum(StockHolding.qty), 0))
            .group_by(StockHolding.lot_id)
            .all()
        )

        discrepancies = []
        for lot in list_lots():
            issued = int(issued_by_lot.get(lot.id, 0))
            available = lot.total_qty - issued
            if lot.status == LOT_STATUS_ARCHIVED:
                status = LOT_STATUS_ARCHIVED
            else:
                status = LOT_STATUS_DEPLETED if available <= 0 else LOT_STATUS_ACTIVE

            if (issued, available, status) == (lot.issued_qty, lot.available_qty, lot.status):
                continue

            discrepancies.append({
                "lot_id": lot.id,
                "lot_number": lot.lot_number,
                "stored": {"issued_qty": lot.issued_qty, "available_qty": lot.available_qty, "status": lot.status},
                "derived": {"issued_qty": issued, "available_qty": available, "status": status},
            })
            if fix and available >= 0:
                compare_and_set(
                    StickerLot,
                    row_id=lot.id,
                    expected_version=lot.version_id,
                    values={"issued_qty": issued, "available_qty": available, "status": status},
                )

        if discrepancies and fix:
            log_activity(
                actor=actor,
                action_type=ACTION_SYSTEM_INFO,
                entity_type="STICKER_LOT",
                description=f"Reconciled {len(discrepancies)} sticker lot(s)",
                details={"lots": [d["lot_number"] for d in discrepancies]},
                severity="medium",
            )
            change_bus.announce(change_bus.STOCK_UPDATED, entity_type="lot", actor_user_id=actor.id if actor else None)
            db.session.commit()
        else:
            db.session.rollback()
        return discrepancies

    return run_with_retry(_op)
