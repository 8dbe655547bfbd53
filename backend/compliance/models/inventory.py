from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


LOT_STATUS_ACTIVE = "ACTIVE"
LOT_STATUS_DEPLETED = "DEPLETED"
LOT_STATUS_ARCHIVED = "ARCHIVED"

STICKER_SIZES = ("Large", "Small")

HOLDER_REGION = "REGION"
HOLDER_INSPECTOR = "INSPECTOR"
HOLDER_TYPES = (HOLDER_REGION, HOLDER_INSPECTOR)

REQUEST_STATUS_PENDING = "PENDING"
REQUEST_STATUS_APPROVED = "APPROVED"
REQUEST_STATUS_REJECTED = "REJECTED"

TRANSFER_STATUS_COMPLETED = "COMPLETED"

USAGE_STATUS_ALLOCATED = "ALLOCATED"
USAGE_STATUS_USED = "USED"
USAGE_STATUS_RETURNED = "RETURNED"
USAGE_STATUS_CANCELLED = "CANCELLED"
USAGE_STATUS_REMOVED = "REMOVED"
ACTIVE_USAGE_STATUSES = (USAGE_STATUS_ALLOCATED, USAGE_STATUS_USED)


class StickerLot(db.Model):
    """
    Bulk pool of printed stickers with a contiguous serial range.

    INVARIANTS:
    - available_qty = total_qty - issued_qty >= 0
    - status is DEPLETED exactly when available_qty == 0 (ARCHIVED aside)
    - current_sequence is the next serial to hand out

    Debits go through a compare-and-set on version_id
    (lot_service.debit_lot); never modify quantities on the ORM object.
    """
    __tablename__ = "sticker_lots"
    __table_args__ = (
        db.CheckConstraint("available_qty >= 0", name="ck_lots_available_non_negative"),
        db.CheckConstraint("available_qty = total_qty - issued_qty", name="ck_lots_conservation"),
        db.Index("ix_lots_size_status", "size", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    lot_number = db.Column(db.String(64), nullable=False, unique=True, index=True)
    size = db.Column(db.String(16), nullable=False)

    total_qty = db.Column(db.Integer, nullable=False)
    issued_qty = db.Column(db.Integer, nullable=False, default=0)
    available_qty = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=LOT_STATUS_ACTIVE, index=True)

    start_sequence = db.Column(db.Integer, nullable=False)
    end_sequence = db.Column(db.Integer, nullable=False)
    current_sequence = db.Column(db.Integer, nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<StickerLot id={self.id} lot={self.lot_number!r} available={self.available_qty}/{self.total_qty}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lot_number": self.lot_number,
            "size": self.size,
            "total_qty": self.total_qty,
            "issued_qty": self.issued_qty,
            "available_qty": self.available_qty,
            "status": self.status,
            "start_sequence": self.start_sequence,
            "end_sequence": self.end_sequence,
            "current_sequence": self.current_sequence,
            "version_id": self.version_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockHolding(db.Model):
    """
    Quantity of one lot held by one holder (region or inspector).

    INVARIANT: sum(qty) over a lot's holdings == lot.issued_qty.
    holder_id points at users.id or regions.id depending on holder_type.
    """
    __tablename__ = "stock_holdings"
    __table_args__ = (
        db.Index("ix_holdings_holder", "holder_type", "holder_id"),
        db.Index("ix_holdings_lot_holder", "lot_id", "holder_type", "holder_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("sticker_lots.id"), nullable=False, index=True)
    lot_number = db.Column(db.String(64), nullable=False, index=True)
    size = db.Column(db.String(16), nullable=False)

    holder_type = db.Column(db.String(16), nullable=False)
    holder_id = db.Column(db.Integer, nullable=False)
    holder_name = db.Column(db.String(255), nullable=True)

    qty = db.Column(db.Integer, nullable=False)
    # Serials currently held, formatted as 5-digit strings
    sequence_numbers = db.Column(db.JSON, nullable=False, default=list)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    issued_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    source_request_id = db.Column(db.Integer, db.ForeignKey("stock_requests.id"), nullable=True)
    source_transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=True)

    lot = db.relationship("StickerLot", backref=db.backref("holdings", lazy=True, order_by="StockHolding.id"))

    def __repr__(self) -> str:
        return f"<StockHolding id={self.id} lot={self.lot_number!r} {self.holder_type}:{self.holder_id} qty={self.qty}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lot_id": self.lot_id,
            "lot_number": self.lot_number,
            "size": self.size,
            "holder_type": self.holder_type,
            "holder_id": self.holder_id,
            "holder_name": self.holder_name,
            "qty": self.qty,
            "sequence_numbers": list(self.sequence_numbers or []),
            "issued_at": to_utc_z(self.issued_at),
            "issued_by_user_id": self.issued_by_user_id,
            "source_request_id": self.source_request_id,
            "source_transfer_id": self.source_transfer_id,
        }


class StockTransfer(db.Model):
    """Point-to-point quantity movement between two holders of the same lot."""
    __tablename__ = "stock_transfers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    from_holder_type = db.Column(db.String(16), nullable=False)
    from_holder_id = db.Column(db.Integer, nullable=False)
    to_holder_type = db.Column(db.String(16), nullable=False)
    to_holder_id = db.Column(db.Integer, nullable=False)

    lot_number = db.Column(db.String(64), nullable=False, index=True)
    qty = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=TRANSFER_STATUS_COMPLETED)
    note = db.Column(db.Text, nullable=True)

    transferred_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    transferred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_holder_type": self.from_holder_type,
            "from_holder_id": self.from_holder_id,
            "to_holder_type": self.to_holder_type,
            "to_holder_id": self.to_holder_id,
            "lot_number": self.lot_number,
            "qty": self.qty,
            "status": self.status,
            "note": self.note,
            "transferred_by_user_id": self.transferred_by_user_id,
            "transferred_at": to_utc_z(self.transferred_at),
        }


class StockRequest(db.Model):
    """
    A holder's ask for more stock.

    LIFECYCLE: PENDING -> APPROVED | REJECTED (both terminal).
    """
    __tablename__ = "stock_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # Mandatory for new requests; NULL only on rows imported from legacy data
    requester_id = db.Column(db.Integer, nullable=True, index=True)
    requester_name = db.Column(db.String(255), nullable=True)
    requester_type = db.Column(db.String(16), nullable=False, default=HOLDER_INSPECTOR)

    qty = db.Column(db.Integer, nullable=False)
    size = db.Column(db.String(16), nullable=True)
    lot_number_preference = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=REQUEST_STATUS_PENDING, index=True)

    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    fulfilled_lot_id = db.Column(db.Integer, db.ForeignKey("sticker_lots.id"), nullable=True)

    rejected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "requester_id": self.requester_id,
            "requester_name": self.requester_name,
            "requester_type": self.requester_type,
            "qty": self.qty,
            "size": self.size,
            "lot_number_preference": self.lot_number_preference,
            "status": self.status,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "fulfilled_lot_id": self.fulfilled_lot_id,
            "rejected_by_user_id": self.rejected_by_user_id,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
        }


class StickerUsage(db.Model):
    """
    Traceability record: which holding (and optionally which serial)
    backs which job order. Quantities were already debited at issuance;
    a usage only reduces the holding's allocatable balance.
    """
    __tablename__ = "sticker_usages"
    __table_args__ = (
        db.Index("ix_usages_holding_status", "stock_holding_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_holding_id = db.Column(db.Integer, db.ForeignKey("stock_holdings.id"), nullable=False, index=True)
    lot_number = db.Column(db.String(64), nullable=False)
    sticker_number = db.Column(db.String(16), nullable=True, index=True)
    size = db.Column(db.String(16), nullable=True)
    job_order_id = db.Column(db.Integer, db.ForeignKey("job_orders.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=USAGE_STATUS_ALLOCATED, index=True)
    photo = db.Column(db.Text, nullable=True)

    allocated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    allocated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    removed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    removed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    holding = db.relationship("StockHolding", backref=db.backref("usages", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_holding_id": self.stock_holding_id,
            "lot_number": self.lot_number,
            "sticker_number": self.sticker_number,
            "size": self.size,
            "job_order_id": self.job_order_id,
            "status": self.status,
            "has_photo": bool(self.photo),
            "allocated_by_user_id": self.allocated_by_user_id,
            "allocated_at": to_utc_z(self.allocated_at),
            "used_at": to_utc_z(self.used_at),
            "returned_at": to_utc_z(self.returned_at),
            "removed_at": to_utc_z(self.removed_at),
            "removed_by_user_id": self.removed_by_user_id,
        }
