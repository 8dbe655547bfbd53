"""
Read views recompute every figure from canonical rows.
"""

from compliance.services import allocation_service, sync_service, tag_service, views_service


class TestInspectorStock:

    def test_balances_reflect_usage_and_queue(self, manager, customer, inspector, inspector_holding, make_job):
        make_job(actor=manager, stock_holding_id=inspector_holding.id)
        sync_service.set_online(False)
        sync_service.submit_job_order(
            actor_id=manager.id,
            payload={"client_id": customer.id, "service_types": ["Inspection"],
                     "stock_holding_id": inspector_holding.id},
        )

        view = views_service.inspector_stock(inspector.id)
        sync_service.set_online(True)

        [row] = view["holdings"]
        assert row["qty"] == 5
        assert row["allocatable"] == 4
        assert row["queued_offline"] == 1
        assert row["local_available"] == 3
        assert view["total_allocatable"] == 4


class TestLotAvailability:

    def test_conservation_flag(self, manager, inspector, make_lot):
        lot = make_lot("LOT-V", 10)
        allocation_service.issue_stock(
            lot_id=lot.id, holder_type="INSPECTOR", holder_id=inspector.id, qty=4, actor_id=manager.id
        )

        [row] = views_service.lot_availability()
        assert row["held_qty"] == 4
        assert row["available_qty"] == 6
        assert row["balanced"] is True


class TestPendingCounts:

    def test_counts(self, manager, make_job):
        make_job()
        tag_service.create_tag("TAG-V", actor_id=manager.id)

        counts = views_service.pending_counts()
        assert counts["awaiting_job_approval"] == 1
        assert counts["available_tags"] == 1
        assert counts["pending_requests"] == 0
        assert counts["offline_queue"] == 0
