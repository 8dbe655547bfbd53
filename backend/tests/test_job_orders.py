"""
Job order lifecycle tests.

Verifies:
- Explicit phase transitions and the legacy status vocabulary
- Payment confirmation issues exactly one certificate
- Payment rejection keeps the job status and records the reason
- Rejection releases allocated stickers
"""

from datetime import timedelta

import pytest

from compliance.errors import Conflict, PermissionDenied, ValidationError
from compliance.models import Certificate, Notification, Payment
from compliance.services import allocation_service, job_order_service, tag_service
from compliance.time_utils import utcnow


def _approved_job(make_job, supervisor, **payload):
    job = make_job(**payload)
    return job_order_service.approve(job.id, actor_id=supervisor.id)


def _pay(job, client_user, accountant):
    job_order_service.submit_payment(job.id, actor_id=client_user.id, method="Bank Transfer")
    return job_order_service.confirm_payment(job.id, actor_id=accountant.id)


class TestCreation:

    def test_new_job_awaits_approval(self, make_job):
        job = make_job()

        assert job.status == "AWAITING_JOB_APPROVAL"
        assert job.legacy_status == "Pending"
        assert job.job_number.startswith(f"JO-{utcnow().year}")

    def test_job_numbers_are_sequential(self, make_job):
        first, second = make_job(), make_job()
        assert first.job_number.endswith("001")
        assert second.job_number.endswith("002")

    def test_inspector_needs_explicit_capability(self, inspector, customer, db_session):
        with pytest.raises(PermissionDenied):
            job_order_service.create_job_order(
                actor_id=inspector.id, payload={"client_id": customer.id, "service_types": ["Inspection"]}
            )

        inspector.permission_overrides = {"createJobOrder": True}
        db_session.commit()
        job = job_order_service.create_job_order(
            actor_id=inspector.id, payload={"client_id": customer.id, "service_types": ["Inspection"]}
        )
        assert job.assigned_to_user_id == inspector.id

    def test_unknown_service_type_rejected(self, make_job):
        with pytest.raises(ValidationError) as exc:
            make_job(service_types=["Juggling"])
        assert exc.value.field == "service_types"

    def test_same_offline_id_returns_existing_job(self, make_job):
        first = make_job(offline_id="offline-1-abc")
        again = make_job(offline_id="offline-1-abc")
        assert again.id == first.id

    def test_sticker_and_tag_allocated_with_job(self, make_job, manager, inspector_holding, db_session):
        tag_service.create_tag("TAG-9", actor_id=manager.id)
        job = make_job(actor=manager, stock_holding_id=inspector_holding.id, tag_number="TAG-9")

        assert job.active_sticker_usage.sticker_number == "10000"
        assert job.active_tag.tag_number == "TAG-9"
        assert tag_service.find_by_number("TAG-9").status == "ALLOCATED"


class TestStateMachine:

    def test_report_cycle_with_revision(self, make_job, supervisor):
        job = _approved_job(make_job, supervisor)
        assert job.status == "APPROVED"

        job = job_order_service.start_execution(job.id, actor_id=supervisor.id)
        assert job.status == "IN_EXECUTION"
        assert job.legacy_status == "In Progress"

        job = job_order_service.submit_report(job.id, {"findings": "ok"}, actor_id=supervisor.id)
        assert job.status == "AWAITING_REPORT_APPROVAL"
        assert job.legacy_status == "Completed"

        job = job_order_service.request_revision(job.id, "Add photos", actor_id=supervisor.id)
        assert job.status == "IN_EXECUTION"
        assert job.revision_comments == "Add photos"

        job = job_order_service.submit_report(job.id, {"findings": "ok", "photos": 3}, actor_id=supervisor.id)
        job = job_order_service.approve(job.id, actor_id=supervisor.id)
        assert job.status == "APPROVED"
        assert job.report_approved_at is not None

        with pytest.raises(Conflict):
            job_order_service.start_execution(job.id, actor_id=supervisor.id)

    def test_cannot_start_before_approval(self, make_job, supervisor):
        job = make_job()
        with pytest.raises(Conflict):
            job_order_service.start_execution(job.id, actor_id=supervisor.id)

    def test_revision_only_from_report_review(self, make_job, supervisor):
        job = make_job()
        with pytest.raises(Conflict):
            job_order_service.request_revision(job.id, "why", actor_id=supervisor.id)

    def test_reject_from_awaiting_approval(self, make_job, supervisor):
        job = job_order_service.reject(make_job().id, "Duplicate booking", actor_id=supervisor.id)
        assert job.status == "REJECTED"
        assert job.legacy_status == "Rejected"
        assert job.rejection_reason == "Duplicate booking"

        with pytest.raises(Conflict):
            job_order_service.approve(job.id, actor_id=supervisor.id)

    def test_reject_releases_allocated_sticker(self, make_job, manager, supervisor, inspector_holding):
        job = make_job(actor=manager, stock_holding_id=inspector_holding.id)
        holding = allocation_service.get_holding(inspector_holding.id)
        assert allocation_service.holding_balance(holding) == 4

        job_order_service.reject(job.id, "Customer cancelled", actor_id=supervisor.id)

        usages = allocation_service.list_usages(job_order_id=job.id)
        assert [u.status for u in usages] == ["CANCELLED"]
        assert allocation_service.holding_balance(holding) == 5

    def test_inspector_cannot_approve(self, make_job, inspector):
        with pytest.raises(PermissionDenied):
            job_order_service.approve(make_job().id, actor_id=inspector.id)

    def test_unassigned_inspector_cannot_start(self, make_job, supervisor, inspector):
        job = _approved_job(make_job, supervisor)
        with pytest.raises(PermissionDenied):
            job_order_service.start_execution(job.id, actor_id=inspector.id)


class TestPayments:

    def test_confirmed_payment_pays_job_and_issues_one_certificate(
        self, make_job, supervisor, client_user, accountant, db_session
    ):
        job = _approved_job(make_job, supervisor)

        result = _pay(job, client_user, accountant)

        assert result["job_order"].status == "PAID"
        assert result["job_order"].legacy_status == "Paid"
        assert result["payment"].status == "CONFIRMED"
        cert = result["certificate"]
        year = utcnow().year
        assert cert.certificate_number == f"CERT-{year}-001"
        assert cert.document_number == "DOC-001"
        assert cert.sticker_number == "STK-001"
        assert cert.verification_code == f"DOC-001-STK-001-CERT-{year}-001"
        assert cert.expiry_date.year == cert.issue_date.year + 1
        assert db_session.query(Certificate).filter_by(job_order_id=job.id).count() == 1

    def test_certificate_uses_allocated_sticker_number(
        self, make_job, manager, supervisor, client_user, accountant, inspector_holding
    ):
        job = make_job(actor=manager, stock_holding_id=inspector_holding.id)
        job_order_service.approve(job.id, actor_id=supervisor.id)

        cert = _pay(job, client_user, accountant)["certificate"]
        assert cert.sticker_number == "10000"

    def test_second_confirmation_fails_without_second_certificate(
        self, make_job, supervisor, client_user, accountant, db_session
    ):
        job = _approved_job(make_job, supervisor)
        _pay(job, client_user, accountant)

        with pytest.raises(Conflict):
            job_order_service.confirm_payment(job.id, actor_id=accountant.id)
        assert db_session.query(Certificate).count() == 1

    def test_confirmation_requires_pending_payment(self, make_job, supervisor, accountant):
        job = _approved_job(make_job, supervisor)
        with pytest.raises(Conflict):
            job_order_service.confirm_payment(job.id, actor_id=accountant.id)
        assert job_order_service.get_job_order(job.id).status == "APPROVED"

    def test_only_one_pending_payment(self, make_job, supervisor, client_user):
        job = _approved_job(make_job, supervisor)
        job_order_service.submit_payment(job.id, actor_id=client_user.id, method="Cash")
        with pytest.raises(Conflict):
            job_order_service.submit_payment(job.id, actor_id=client_user.id, method="Cash")

    def test_unpaid_job_cannot_take_payment_before_approval(self, make_job, client_user):
        job = make_job()
        with pytest.raises(Conflict):
            job_order_service.submit_payment(job.id, actor_id=client_user.id, method="Cash")

    def test_other_user_cannot_pay_for_client(self, make_job, supervisor, inspector):
        job = _approved_job(make_job, supervisor)
        with pytest.raises(PermissionDenied):
            job_order_service.submit_payment(job.id, actor_id=inspector.id, method="Cash")

    def test_rejected_payment_keeps_job_status(
        self, make_job, supervisor, client_user, accountant, manager, db_session
    ):
        job = _approved_job(make_job, supervisor)
        job_order_service.submit_payment(job.id, actor_id=client_user.id, method="Credit Card")

        payment = job_order_service.reject_payment(job.id, "Card declined", actor_id=accountant.id)

        assert payment.status == "FAILED"
        assert payment.failure_reason == "Card declined"
        job = job_order_service.get_job_order(job.id)
        assert job.status == "APPROVED"
        assert job.payment_status == "FAILED"
        assert db_session.query(Certificate).count() == 0
        notified = {n.user_id for n in db_session.query(Notification).filter_by(title="Payment rejected")}
        assert notified == {client_user.id, manager.id}

    def test_client_can_pay_again_after_rejection(self, make_job, supervisor, client_user, accountant, db_session):
        job = _approved_job(make_job, supervisor)
        job_order_service.submit_payment(job.id, actor_id=client_user.id, method="Credit Card")
        job_order_service.reject_payment(job.id, "Card declined", actor_id=accountant.id)

        result = _pay(job, client_user, accountant)

        assert result["job_order"].status == "PAID"
        assert db_session.query(Payment).filter_by(job_order_id=job.id).count() == 2

    def test_paid_job_cannot_be_rejected(self, make_job, supervisor, client_user, accountant):
        job = _approved_job(make_job, supervisor)
        _pay(job, client_user, accountant)
        with pytest.raises(Conflict):
            job_order_service.reject(job.id, "nope", actor_id=supervisor.id)


class TestCertificateVerification:

    def test_verify_by_number_and_code(self, make_job, supervisor, client_user, accountant):
        job = _approved_job(make_job, supervisor)
        cert = _pay(job, client_user, accountant)["certificate"]

        by_number = job_order_service.verify_certificate(cert.certificate_number)
        by_code = job_order_service.verify_certificate(cert.verification_code)

        assert by_number["valid"] is True
        assert by_code["certificate"]["id"] == cert.id

    def test_expired_certificate_reported(self, make_job, supervisor, client_user, accountant, db_session):
        job = _approved_job(make_job, supervisor)
        cert = _pay(job, client_user, accountant)["certificate"]
        cert.expiry_date = cert.issue_date - timedelta(days=1)
        db_session.commit()

        result = job_order_service.verify_certificate(cert.certificate_number)

        assert result["valid"] is False
        assert result["status"] == "EXPIRED"
