"""
Allocation engine tests.

Verifies:
- Request approval prefers the requested lot, then falls back in creation order
- Issuance and transfers conserve quantity across holders
- Requests are terminal once approved or rejected
- Requester identity is never guessed
- Sticker usages reduce the allocatable balance only
"""

import pytest

from compliance.errors import Conflict, InsufficientStock, NotFound, PermissionDenied, ValidationError
from compliance.extensions import db
from compliance.models import ActivityLog, Notification, StockHolding, StockRequest
from compliance.services import allocation_service, delegation_service, lot_service


def _holder_qty(holder_type, holder_id, lot_number):
    return (
        db.session.query(db.func.coalesce(db.func.sum(StockHolding.qty), 0))
        .filter(
            StockHolding.holder_type == holder_type,
            StockHolding.holder_id == holder_id,
            StockHolding.lot_number == lot_number,
        )
        .scalar()
    )


class TestRequestApproval:

    def test_preferred_lot_is_used_when_it_can_cover(self, make_lot, manager, inspector):
        l1 = make_lot("L1", 10)
        l2 = make_lot("L2", 20)
        req = allocation_service.submit_request(actor_id=inspector.id, qty=5, lot_number_preference="L2")

        req = allocation_service.approve_request(req.id, actor_id=manager.id)

        assert req.status == "APPROVED"
        assert req.fulfilled_lot_id == l2.id
        assert lot_service.get_lot(l2.id).available_qty == 15
        assert lot_service.get_lot(l1.id).available_qty == 10
        assert _holder_qty("INSPECTOR", inspector.id, "L2") == 5

    def test_falls_back_when_preferred_lot_is_short(self, make_lot, manager, inspector, other_inspector):
        l1 = make_lot("L1", 10)
        l2 = make_lot("L2", 15)
        allocation_service.issue_stock(
            lot_id=l1.id, holder_type="INSPECTOR", holder_id=other_inspector.id, qty=8, actor_id=manager.id
        )
        req = allocation_service.submit_request(actor_id=inspector.id, qty=5, lot_number_preference="L1")

        req = allocation_service.approve_request(req.id, actor_id=manager.id)

        assert req.fulfilled_lot_id == l2.id
        assert lot_service.get_lot(l1.id).available_qty == 2
        assert lot_service.get_lot(l2.id).available_qty == 10

    def test_without_preference_oldest_lot_first(self, make_lot, manager, inspector):
        l1 = make_lot("L1", 10)
        make_lot("L2", 10)
        req = allocation_service.submit_request(actor_id=inspector.id, qty=4)

        req = allocation_service.approve_request(req.id, actor_id=manager.id)

        assert req.fulfilled_lot_id == l1.id

    def test_size_filter_skips_other_sizes(self, make_lot, manager, inspector):
        make_lot("L1", 10)
        small = make_lot("S1", 10, size="Small")
        req = allocation_service.submit_request(actor_id=inspector.id, qty=3, size="Small")

        req = allocation_service.approve_request(req.id, actor_id=manager.id)

        assert req.fulfilled_lot_id == small.id

    def test_no_lot_can_cover_leaves_request_pending(self, make_lot, manager, inspector):
        l1 = make_lot("L1", 3)
        req = allocation_service.submit_request(actor_id=inspector.id, qty=5)

        with pytest.raises(InsufficientStock):
            allocation_service.approve_request(req.id, actor_id=manager.id)

        assert allocation_service.get_request(req.id).status == "PENDING"
        assert lot_service.get_lot(l1.id).available_qty == 3

    def test_approval_notifies_requester(self, make_lot, manager, inspector, db_session):
        make_lot("L1", 10)
        req = allocation_service.submit_request(actor_id=inspector.id, qty=2)
        allocation_service.approve_request(req.id, actor_id=manager.id)

        notes = db_session.query(Notification).filter_by(user_id=inspector.id).all()
        assert len(notes) == 1
        assert notes[0].notification_type == "approval"

    def test_inspector_cannot_approve(self, make_lot, inspector):
        make_lot("L1", 10)
        req = allocation_service.submit_request(actor_id=inspector.id, qty=2)
        with pytest.raises(PermissionDenied):
            allocation_service.approve_request(req.id, actor_id=inspector.id)

    def test_delegate_approves_on_behalf_of_manager(self, make_lot, manager, gm, inspector, other_inspector, db_session):
        make_lot("L1", 10)
        delegation_service.set_delegation(delegator_id=manager.id, delegate_ids=[other_inspector.id], actor_id=gm.id)
        req = allocation_service.submit_request(actor_id=inspector.id, qty=2)

        req = allocation_service.approve_request(req.id, actor_id=other_inspector.id, on_behalf_of=manager.id)

        assert req.status == "APPROVED"
        assert req.approved_by_user_id == other_inspector.id
        entry = db_session.query(ActivityLog).filter_by(action_type="APPROVE", entity_type="STOCK_REQUEST").one()
        assert entry.actor_user_id == other_inspector.id
        assert entry.displayed_actor_user_id == manager.id
        assert entry.is_delegated is True


class TestRequestTerminalStates:

    def test_approved_request_cannot_be_approved_again(self, make_lot, manager, inspector):
        make_lot("L1", 10)
        req = allocation_service.submit_request(actor_id=inspector.id, qty=2)
        allocation_service.approve_request(req.id, actor_id=manager.id)

        with pytest.raises(Conflict):
            allocation_service.approve_request(req.id, actor_id=manager.id)
        with pytest.raises(Conflict):
            allocation_service.reject_request(req.id, "too late", actor_id=manager.id)

    def test_rejected_request_keeps_reason(self, manager, inspector):
        req = allocation_service.submit_request(actor_id=inspector.id, qty=2)
        req = allocation_service.reject_request(req.id, "Budget freeze", actor_id=manager.id)

        assert req.status == "REJECTED"
        assert req.rejection_reason == "Budget freeze"
        with pytest.raises(Conflict):
            allocation_service.approve_request(req.id, actor_id=manager.id)

    def test_rejection_requires_reason(self, manager, inspector):
        req = allocation_service.submit_request(actor_id=inspector.id, qty=2)
        with pytest.raises(ValidationError):
            allocation_service.reject_request(req.id, "   ", actor_id=manager.id)
        assert allocation_service.get_request(req.id).status == "PENDING"


class TestRequesterIdentity:

    def test_inspector_request_defaults_to_actor(self, inspector):
        req = allocation_service.submit_request(actor_id=inspector.id, qty=1)
        assert req.requester_id == inspector.id
        assert req.requester_name == inspector.name

    def test_region_request_requires_explicit_requester(self, manager):
        with pytest.raises(ValidationError) as exc:
            allocation_service.submit_request(actor_id=manager.id, qty=1, requester_type="REGION")
        assert exc.value.field == "requester_id"

    def test_inspector_cannot_request_for_someone_else(self, inspector, other_inspector):
        with pytest.raises(PermissionDenied):
            allocation_service.submit_request(actor_id=inspector.id, qty=1, requester_id=other_inspector.id)

    def test_legacy_request_without_id_is_not_guessed(self, app, make_lot, manager, inspector, db_session):
        make_lot("L1", 10)
        legacy = StockRequest(requester_id=None, requester_name=inspector.name, qty=2, status="PENDING")
        db_session.add(legacy)
        db_session.commit()

        with pytest.raises(ValidationError):
            allocation_service.approve_request(legacy.id, actor_id=manager.id)

    def test_legacy_name_fallback_when_enabled(self, app, monkeypatch, make_lot, manager, inspector, db_session):
        monkeypatch.setitem(app.config, "ALLOW_REQUESTER_NAME_FALLBACK", True)
        make_lot("L1", 10)
        legacy = StockRequest(requester_id=None, requester_name=inspector.name, qty=2, status="PENDING")
        db_session.add(legacy)
        db_session.commit()

        req = allocation_service.approve_request(legacy.id, actor_id=manager.id)

        assert req.requester_id == inspector.id
        assert _holder_qty("INSPECTOR", inspector.id, "L1") == 2


class TestIssueAndTransfer:

    def test_issue_then_transfer_round_trip(self, make_lot, manager, region, inspector):
        lot = make_lot("L1", 100)
        allocation_service.issue_stock(
            lot_id=lot.id, holder_type="REGION", holder_id=region.id, qty=30, actor_id=manager.id
        )
        assert lot_service.get_lot(lot.id).available_qty == 70

        transfer = allocation_service.transfer_stock(
            from_holder_type="REGION",
            from_holder_id=region.id,
            to_holder_type="INSPECTOR",
            to_holder_id=inspector.id,
            lot_number="L1",
            qty=10,
            actor_id=manager.id,
        )

        assert transfer.status == "COMPLETED"
        assert _holder_qty("REGION", region.id, "L1") == 20
        assert _holder_qty("INSPECTOR", inspector.id, "L1") == 10
        lot = lot_service.get_lot(lot.id)
        assert lot.issued_qty == 30
        assert lot.available_qty == 70

    def test_transfer_moves_serials_with_quantity(self, make_lot, manager, region, inspector):
        lot = make_lot("L1", 10)
        allocation_service.issue_stock(
            lot_id=lot.id, holder_type="REGION", holder_id=region.id, qty=4, actor_id=manager.id
        )
        allocation_service.transfer_stock(
            from_holder_type="REGION", from_holder_id=region.id,
            to_holder_type="INSPECTOR", to_holder_id=inspector.id,
            lot_number="L1", qty=2, actor_id=manager.id,
        )

        src = allocation_service.list_holdings(holder_type="REGION", holder_id=region.id)[0]
        dst = allocation_service.list_holdings(holder_type="INSPECTOR", holder_id=inspector.id)[0]
        assert src.sequence_numbers == ["10000", "10001"]
        assert dst.sequence_numbers == ["10002", "10003"]

    def test_transfer_beyond_source_balance_fails(self, make_lot, manager, region, inspector, db_session):
        lot = make_lot("L1", 10)
        allocation_service.issue_stock(
            lot_id=lot.id, holder_type="REGION", holder_id=region.id, qty=5, actor_id=manager.id
        )

        with pytest.raises(InsufficientStock):
            allocation_service.transfer_stock(
                from_holder_type="REGION", from_holder_id=region.id,
                to_holder_type="INSPECTOR", to_holder_id=inspector.id,
                lot_number="L1", qty=6, actor_id=manager.id,
            )

        assert _holder_qty("REGION", region.id, "L1") == 5
        assert _holder_qty("INSPECTOR", inspector.id, "L1") == 0

    def test_transfer_to_same_holder_rejected(self, make_lot, manager, region):
        make_lot("L1", 10)
        with pytest.raises(ValidationError):
            allocation_service.transfer_stock(
                from_holder_type="REGION", from_holder_id=region.id,
                to_holder_type="REGION", to_holder_id=region.id,
                lot_number="L1", qty=1, actor_id=manager.id,
            )

    def test_transfer_of_unknown_lot(self, manager, region, inspector):
        with pytest.raises(NotFound):
            allocation_service.transfer_stock(
                from_holder_type="REGION", from_holder_id=region.id,
                to_holder_type="INSPECTOR", to_holder_id=inspector.id,
                lot_number="NO-SUCH-LOT", qty=1, actor_id=manager.id,
            )

    def test_holdings_sum_equals_issued(self, make_lot, manager, region, inspector, other_inspector, db_session):
        lot = make_lot("L1", 50)
        allocation_service.issue_stock(
            lot_id=lot.id, holder_type="REGION", holder_id=region.id, qty=20, actor_id=manager.id
        )
        allocation_service.issue_stock(
            lot_id=lot.id, holder_type="INSPECTOR", holder_id=inspector.id, qty=7, actor_id=manager.id
        )
        allocation_service.transfer_stock(
            from_holder_type="REGION", from_holder_id=region.id,
            to_holder_type="INSPECTOR", to_holder_id=other_inspector.id,
            lot_number="L1", qty=9, actor_id=manager.id,
        )
        allocation_service.transfer_stock(
            from_holder_type="INSPECTOR", from_holder_id=other_inspector.id,
            to_holder_type="INSPECTOR", to_holder_id=inspector.id,
            lot_number="L1", qty=4, actor_id=manager.id,
        )

        total = db_session.query(db.func.sum(StockHolding.qty)).filter(StockHolding.lot_id == lot.id).scalar()
        lot = lot_service.get_lot(lot.id)
        assert total == lot.issued_qty == 27
        assert lot.available_qty == lot.total_qty - lot.issued_qty


class TestStickerUsage:

    def test_allocation_reduces_balance_not_quantity(self, inspector_holding, inspector, make_job):
        job = make_job()
        usage = allocation_service.allocate_sticker_to_job_order(
            stock_holding_id=inspector_holding.id, job_order_id=job.id, actor_id=inspector.id
        )

        holding = allocation_service.get_holding(inspector_holding.id)
        assert usage.status == "ALLOCATED"
        assert usage.sticker_number == "10000"
        assert holding.qty == 5
        assert allocation_service.holding_balance(holding) == 4

    def test_one_active_sticker_per_job(self, inspector_holding, inspector, make_job):
        job = make_job()
        allocation_service.allocate_sticker_to_job_order(
            stock_holding_id=inspector_holding.id, job_order_id=job.id, actor_id=inspector.id
        )
        with pytest.raises(Conflict):
            allocation_service.allocate_sticker_to_job_order(
                stock_holding_id=inspector_holding.id, job_order_id=job.id, actor_id=inspector.id
            )

    def test_same_serial_cannot_be_allocated_twice(self, inspector_holding, inspector, make_job):
        first, second = make_job(), make_job()
        allocation_service.allocate_sticker_to_job_order(
            stock_holding_id=inspector_holding.id, job_order_id=first.id,
            actor_id=inspector.id, sticker_number="10002",
        )
        with pytest.raises(Conflict):
            allocation_service.allocate_sticker_to_job_order(
                stock_holding_id=inspector_holding.id, job_order_id=second.id,
                actor_id=inspector.id, sticker_number="10002",
            )

    def test_other_inspector_cannot_use_holding(self, inspector_holding, other_inspector, make_job):
        job = make_job()
        with pytest.raises(PermissionDenied):
            allocation_service.allocate_sticker_to_job_order(
                stock_holding_id=inspector_holding.id, job_order_id=job.id, actor_id=other_inspector.id
            )

    def test_release_restores_balance(self, inspector_holding, inspector, make_job):
        usage = allocation_service.allocate_sticker_to_job_order(
            stock_holding_id=inspector_holding.id, job_order_id=make_job().id, actor_id=inspector.id
        )
        allocation_service.release_sticker(usage.id, actor_id=inspector.id)

        assert allocation_service.holding_balance(allocation_service.get_holding(inspector_holding.id)) == 5

    def test_used_sticker_cannot_be_released(self, inspector_holding, inspector, make_job):
        usage = allocation_service.allocate_sticker_to_job_order(
            stock_holding_id=inspector_holding.id, job_order_id=make_job().id, actor_id=inspector.id
        )
        allocation_service.mark_sticker_used(usage.id, actor_id=inspector.id)
        with pytest.raises(Conflict):
            allocation_service.release_sticker(usage.id, actor_id=inspector.id)

    def test_removal_report_is_idempotent(self, inspector_holding, inspector, make_job):
        job = make_job()
        usage = allocation_service.allocate_sticker_to_job_order(
            stock_holding_id=inspector_holding.id, job_order_id=job.id, actor_id=inspector.id
        )
        allocation_service.mark_sticker_used(usage.id, actor_id=inspector.id)

        first = allocation_service.report_sticker_removal(actor_id=inspector.id, job_order_id=job.id)
        again = allocation_service.report_sticker_removal(actor_id=inspector.id, usage_id=usage.id)

        assert first.status == again.status == "REMOVED"
        assert again.removed_by_user_id == inspector.id

    def test_transfer_skips_allocated_stickers(self, inspector_holding, inspector, other_inspector, manager, make_job):
        for _ in range(4):
            allocation_service.allocate_sticker_to_job_order(
                stock_holding_id=inspector_holding.id, job_order_id=make_job().id, actor_id=inspector.id
            )

        with pytest.raises(InsufficientStock):
            allocation_service.transfer_stock(
                from_holder_type="INSPECTOR", from_holder_id=inspector.id,
                to_holder_type="INSPECTOR", to_holder_id=other_inspector.id,
                lot_number="LOT-H", qty=2, actor_id=manager.id,
            )
        allocation_service.transfer_stock(
            from_holder_type="INSPECTOR", from_holder_id=inspector.id,
            to_holder_type="INSPECTOR", to_holder_id=other_inspector.id,
            lot_number="LOT-H", qty=1, actor_id=manager.id,
        )
        dst = allocation_service.list_holdings(holder_type="INSPECTOR", holder_id=other_inspector.id)[0]
        assert dst.sequence_numbers == ["10004"]
