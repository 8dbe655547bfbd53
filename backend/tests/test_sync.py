"""
Offline queue tests.

Verifies:
- Offline submissions never touch canonical tables
- Local availability subtracts queued allocations
- Replay is FIFO, idempotent per offline id and tolerant of bad items
- Managers can discard or re-point stuck items
"""

import pytest

from compliance.errors import Conflict, InsufficientStock, OfflineDeferred, PermissionDenied
from compliance.models import JobOrder, OfflineJobOrder
from compliance.services import allocation_service, sync_service


@pytest.fixture
def offline(db_session):
    sync_service.set_online(False)
    yield
    sync_service.set_online(True)


def _queue(actor, customer, **extra):
    payload = {"client_id": customer.id, "service_types": ["Inspection"]}
    payload.update(extra.pop("payload", {}))
    return sync_service.submit_job_order(actor_id=actor.id, payload=payload, **extra)


class TestOfflineSubmission:

    def test_online_submission_creates_job(self, supervisor, customer, db_session):
        job = _queue(supervisor, customer)
        assert isinstance(job, JobOrder)
        assert db_session.query(OfflineJobOrder).count() == 0

    def test_offline_submission_is_deferred(self, offline, supervisor, customer, db_session):
        result = _queue(supervisor, customer)

        assert isinstance(result, OfflineDeferred)
        assert result.offline_id.startswith("offline-")
        assert result.queued_position == 1
        assert db_session.query(JobOrder).count() == 0
        assert sync_service.get_sync_status()["pending_count"] == 1

    def test_same_offline_id_queued_once(self, offline, supervisor, customer, db_session):
        first = _queue(supervisor, customer, offline_id="offline-1-aaa")
        second = _queue(supervisor, customer, offline_id="offline-1-aaa")

        assert first.offline_id == second.offline_id
        assert db_session.query(OfflineJobOrder).count() == 1

    def test_local_availability_counts_queued_claims(self, offline, manager, customer, inspector_holding):
        assert sync_service.local_available(inspector_holding.id) == 5

        _queue(manager, customer, payload={"stock_holding_id": inspector_holding.id})
        _queue(manager, customer, payload={"stock_holding_id": inspector_holding.id})

        holding = allocation_service.get_holding(inspector_holding.id)
        assert sync_service.local_available(holding) == 3
        assert allocation_service.holding_balance(holding) == 5

    def test_queue_refused_when_local_stock_exhausted(self, offline, manager, customer, region, make_lot, db_session):
        lot = make_lot("LOT-S", 10)
        holding = allocation_service.issue_stock(
            lot_id=lot.id, holder_type="REGION", holder_id=region.id, qty=1, actor_id=manager.id
        )
        _queue(manager, customer, payload={"stock_holding_id": holding.id})

        with pytest.raises(InsufficientStock):
            _queue(manager, customer, payload={"stock_holding_id": holding.id})
        assert db_session.query(OfflineJobOrder).count() == 1


class TestReplay:

    def test_reconnect_replays_in_order(self, manager, customer, inspector_holding, db_session):
        sync_service.set_online(False)
        first = _queue(manager, customer, payload={"stock_holding_id": inspector_holding.id})
        second = _queue(manager, customer, payload={"stock_holding_id": inspector_holding.id})

        status = sync_service.set_online(True)

        assert status["replay"] == {"synced": 2, "failed": 0}
        assert status["pending_count"] == 0
        jobs = db_session.query(JobOrder).order_by(JobOrder.id).all()
        assert [j.offline_id for j in jobs] == [first.offline_id, second.offline_id]
        assert [j.active_sticker_usage.sticker_number for j in jobs] == ["10000", "10001"]
        item = sync_service.get_item(first.offline_id)
        assert item.sync_status == "synced"
        assert item.job_order_id == jobs[0].id

    def test_replay_is_idempotent(self, supervisor, customer, db_session):
        sync_service.set_online(False)
        _queue(supervisor, customer)
        sync_service.set_online(True)

        again = sync_service.sync_offline_queue()

        assert again == {"synced": 0, "failed": 0}
        assert db_session.query(JobOrder).count() == 1

    def test_failed_item_stays_queued_and_later_items_sync(self, supervisor, customer, db_session):
        sync_service.set_online(False)
        bad = _queue(supervisor, customer, payload={"client_id": 999999})
        good = _queue(supervisor, customer)

        status = sync_service.set_online(True)

        assert status["replay"] == {"synced": 1, "failed": 1}
        assert status["failed_count"] == 1
        failed = sync_service.get_item(bad.offline_id)
        assert failed.sync_status == "failed"
        assert failed.attempts == 1
        assert "999999" in failed.error_message
        assert sync_service.get_item(good.offline_id).sync_status == "synced"
        assert db_session.query(JobOrder).count() == 1

    def test_sync_while_offline_does_nothing(self, offline, supervisor, customer, db_session):
        _queue(supervisor, customer)

        assert sync_service.sync_offline_queue() == {"synced": 0, "failed": 0, "offline": True}
        assert db_session.query(JobOrder).count() == 0

    def test_replay_fails_when_canonical_stock_ran_out(self, manager, customer, region, make_lot, make_job):
        lot = make_lot("LOT-S", 10)
        holding = allocation_service.issue_stock(
            lot_id=lot.id, holder_type="REGION", holder_id=region.id, qty=1, actor_id=manager.id
        )
        sync_service.set_online(False)
        queued = _queue(manager, customer, payload={"stock_holding_id": holding.id})
        # Another device took the last sticker canonically
        make_job(actor=manager, stock_holding_id=holding.id)

        status = sync_service.set_online(True)

        assert status["replay"] == {"synced": 0, "failed": 1}
        item = sync_service.get_item(queued.offline_id)
        assert item.sync_status == "failed"
        assert "no stickers left" in item.error_message


class TestManagerReconciliation:

    def test_discard_removes_claim(self, offline, manager, customer, inspector_holding):
        queued = _queue(manager, customer, payload={"stock_holding_id": inspector_holding.id})

        item = sync_service.discard_offline_item(queued.offline_id, "Entered twice", actor_id=manager.id)

        assert item.sync_status == "discarded"
        assert item.discard_reason == "Entered twice"
        assert sync_service.local_available(inspector_holding.id) == 5

    def test_finished_items_cannot_be_changed(self, offline, manager, customer):
        queued = _queue(manager, customer)
        sync_service.discard_offline_item(queued.offline_id, "Entered twice", actor_id=manager.id)

        with pytest.raises(Conflict):
            sync_service.discard_offline_item(queued.offline_id, "again", actor_id=manager.id)
        with pytest.raises(Conflict):
            sync_service.reassign_offline_allocation(queued.offline_id, stock_holding_id=None, actor_id=manager.id)

    def test_reassign_points_item_at_other_holding(
        self, offline, manager, customer, region, inspector_holding, make_lot
    ):
        lot = make_lot("LOT-R", 10)
        other = allocation_service.issue_stock(
            lot_id=lot.id, holder_type="REGION", holder_id=region.id, qty=2, actor_id=manager.id
        )
        queued = _queue(manager, customer, payload={"stock_holding_id": inspector_holding.id})

        item = sync_service.reassign_offline_allocation(
            queued.offline_id, stock_holding_id=other.id, actor_id=manager.id
        )

        assert item.stock_holding_id == other.id
        assert item.sync_status == "pending"
        assert sync_service.local_available(inspector_holding.id) == 5
        assert sync_service.local_available(other.id) == 1


class TestConnectivityControl:

    def test_acting_user_needs_manage_stickers(self, inspector, db_session):
        with pytest.raises(PermissionDenied):
            sync_service.set_online(False, actor_id=inspector.id)
        with pytest.raises(PermissionDenied):
            sync_service.sync_offline_queue(actor_id=inspector.id)
        assert sync_service.is_online() is True

    def test_manager_toggles_connectivity(self, manager, db_session):
        status = sync_service.set_online(False, actor_id=manager.id)
        assert status["is_online"] is False
        assert "replay" not in status

        status = sync_service.set_online(True, actor_id=manager.id)
        assert status["is_online"] is True
        assert status["replay"] == {"synced": 0, "failed": 0}
