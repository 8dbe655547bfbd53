"""
Change bus tests: signals are dispatched only for committed work and the
polling feed is cursor based.
"""

import pytest

from compliance.errors import ValidationError
from compliance.extensions import db
from compliance.models import ChangeEvent
from compliance.services import change_bus


class _Recorder:

    def __init__(self):
        self.changes = []

    def __call__(self, sender, **kwargs):
        self.changes.append(kwargs.get("change") or kwargs.get("changes"))


class TestSignals:

    def test_signal_after_commit(self, make_job, db_session):
        recorder = _Recorder()
        with change_bus.signals[change_bus.JOB_ORDERS_UPDATED].connected_to(recorder):
            job = make_job()

        assert len(recorder.changes) == 1
        assert recorder.changes[0]["entity_id"] == job.id
        assert recorder.changes[0]["event"] == change_bus.JOB_ORDERS_UPDATED

    def test_refresh_batches_every_change(self, make_job, db_session):
        recorder = _Recorder()
        with change_bus.signals[change_bus.REFRESH].connected_to(recorder):
            make_job()

        assert len(recorder.changes) == 1
        assert change_bus.JOB_ORDERS_UPDATED in {c["event"] for c in recorder.changes[0]}

    def test_failed_operation_sends_nothing(self, make_job, db_session):
        recorder = _Recorder()
        with change_bus.signals[change_bus.REFRESH].connected_to(recorder):
            with pytest.raises(ValidationError):
                make_job(service_types=["Juggling"])

        assert recorder.changes == []
        assert db_session.query(ChangeEvent).count() == 0

    def test_rolled_back_announcement_is_dropped(self, db_session):
        change_bus.announce(change_bus.TAGS_UPDATED, entity_type="tag", entity_id=1)
        db.session.rollback()

        assert change_bus.publish_committed() == []
        assert db_session.query(ChangeEvent).count() == 0

    def test_unknown_event_rejected(self, db_session):
        with pytest.raises(ValueError):
            change_bus.announce("weather-updated")


class TestPolling:

    def test_changes_since_cursor(self, make_job, db_session):
        make_job()
        first = change_bus.changes_since(0)

        assert first["events"]
        assert first["cursor"] == first["events"][-1]["seq"]
        assert first["poll_interval_seconds"] == 2

        make_job()
        second = change_bus.changes_since(first["cursor"])
        assert all(e["seq"] > first["cursor"] for e in second["events"])
        assert change_bus.changes_since(second["cursor"])["events"] == []

    def test_payloads_carry_no_quantities(self, make_lot, db_session):
        make_lot("LOT-Q", 10)
        events = change_bus.changes_since(0)["events"]

        assert events
        assert all(set(e) <= {"seq", "event", "entity_type", "entity_id", "actor_user_id", "occurred_at"}
                   for e in events)
