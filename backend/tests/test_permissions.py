"""
Capability resolution tests.

Order: explicit override, then permission level, then role defaults.
Unknown capabilities and inactive users fail closed.
"""

import pytest

from compliance.errors import NotFound, PermissionDenied
from compliance.permissions import CAPABILITIES
from compliance.services import job_order_service, notification_service, permission_service
from compliance.services.permission_service import authorize, has_capability


class TestResolution:

    def test_role_defaults(self, inspector, supervisor, accountant):
        assert has_capability(supervisor, "approveJobOrders")
        assert has_capability(accountant, "confirmPayments")
        assert not has_capability(inspector, "approveJobOrders")
        assert not has_capability(inspector, "createJobOrder")

    def test_level_beats_role(self, inspector, db_session):
        inspector.permission_level = "Moderate"
        db_session.commit()

        assert has_capability(inspector, "viewAllJobOrders")
        # Not covered by the level table, so the role default applies
        assert not has_capability(inspector, "createJobOrder")

    def test_override_beats_level(self, inspector, db_session):
        inspector.permission_level = "Advanced"
        inspector.permission_overrides = {"manageStickers": False}
        db_session.commit()

        assert not has_capability(inspector, "manageStickers")
        assert has_capability(inspector, "manageRegions")

    def test_gm_holds_everything(self, gm):
        caps = permission_service.get_user_capabilities(gm)
        assert set(caps) == set(CAPABILITIES)
        assert all(caps.values())

    @pytest.mark.parametrize("role_fixture", ["manager", "supervisor", "gm"])
    def test_creators_cannot_be_overridden(self, request, role_fixture, db_session):
        user = request.getfixturevalue(role_fixture)
        user.permission_overrides = {"createJobOrder": False}
        db_session.commit()

        assert has_capability(user, "createJobOrder")

    def test_unknown_capability_denied(self, gm):
        assert not has_capability(gm, "launchRockets")

    def test_inactive_user_denied(self, manager, db_session):
        manager.is_active = False
        db_session.commit()

        assert not has_capability(manager, "manageStickers")
        with pytest.raises(PermissionDenied):
            authorize(manager.id)


class TestAuthorize:

    def test_missing_actor(self, db_session):
        with pytest.raises(PermissionDenied):
            authorize(None)

    def test_unknown_actor(self, db_session):
        with pytest.raises(NotFound):
            authorize(424242)

    def test_capability_named_in_error(self, inspector):
        with pytest.raises(PermissionDenied) as exc:
            authorize(inspector.id, "manageUsers")
        assert exc.value.to_dict()["required_capability"] == "manageUsers"

    def test_plain_identity(self, manager):
        identity = authorize(manager.id, "manageStickers")
        assert identity.actual.id == identity.displayed.id == manager.id
        assert not identity.is_delegated


class TestNotifications:

    def test_only_owner_marks_read(self, make_job, supervisor, inspector, db_session):
        job = make_job(assigned_to_user_id=inspector.id)
        job_order_service.approve(job.id, actor_id=supervisor.id)

        notes = notification_service.list_notifications(inspector.id, unread_only=True)
        assert [n.title for n in notes] == ["Job order approved"]

        with pytest.raises(PermissionDenied):
            notification_service.mark_read(notes[0].id, user_id=supervisor.id)

        read = notification_service.mark_read(notes[0].id, user_id=inspector.id)
        assert read.is_read
        assert notification_service.list_notifications(inspector.id, unread_only=True) == []
