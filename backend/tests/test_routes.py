"""
HTTP surface tests.

Verifies:
- Requests without an actor return 401, malformed actor headers 400
- Domain errors map onto 400/403/404/409
- Offline job creation answers 202 with the offline id
- Certificate verification is public
"""

import pytest

from compliance.services import job_order_service


# =============================================================================
# ACTOR HEADERS: 401 / 400
# =============================================================================


class TestActorHeaders:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/stickers/lots"),
            ("POST", "/api/stickers/lots"),
            ("POST", "/api/stickers/issue"),
            ("GET", "/api/stock-requests"),
            ("GET", "/api/tags"),
            ("GET", "/api/job-orders"),
            ("GET", "/api/sync/status"),
            ("GET", "/api/changes"),
            ("GET", "/api/me/capabilities"),
        ],
    )
    def test_requires_actor(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_non_integer_actor(self, client, db_session):
        resp = client.get("/api/stickers/lots", headers={"X-Actor-Id": "abc"})
        assert resp.status_code == 400

    def test_unknown_actor(self, client, db_session):
        resp = client.get("/api/me/capabilities", headers={"X-Actor-Id": "9999"})
        assert resp.status_code == 404


# =============================================================================
# SYSTEM
# =============================================================================


class TestSystem:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["sync"]["is_online"] is True

    def test_capabilities(self, client, headers, accountant):
        resp = client.get("/api/me/capabilities", headers=headers(accountant))
        assert resp.status_code == 200
        caps = resp.get_json()["capabilities"]
        assert caps["confirmPayments"] is True
        assert caps["manageStickers"] is False


# =============================================================================
# STICKERS
# =============================================================================


class TestStickerRoutes:

    def test_create_lot(self, client, headers, manager):
        resp = client.post(
            "/api/stickers/lots",
            json={"lot_number": "LOT-API", "size": "Large", "qty": 25},
            headers=headers(manager),
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["available_qty"] == 25
        assert body["end_sequence"] == 10024

    def test_create_lot_missing_field(self, client, headers, manager):
        resp = client.post("/api/stickers/lots", json={"lot_number": "LOT-API"}, headers=headers(manager))
        assert resp.status_code == 400

    def test_inspector_cannot_create_lot(self, client, headers, inspector):
        resp = client.post(
            "/api/stickers/lots",
            json={"lot_number": "LOT-API", "size": "Large", "qty": 25},
            headers=headers(inspector),
        )
        assert resp.status_code == 403
        assert resp.get_json()["required_capability"] == "manageStickers"

    def test_over_issue_is_conflict(self, client, headers, manager, inspector, make_lot):
        lot = make_lot("LOT-API", 3)
        resp = client.post(
            "/api/stickers/issue",
            json={"lot_id": lot.id, "holder_type": "INSPECTOR", "holder_id": inspector.id, "qty": 4},
            headers=headers(manager),
        )
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["type"] == "InsufficientStock"
        assert body["retryable"] is True

    def test_issue(self, client, headers, manager, inspector, make_lot):
        lot = make_lot("LOT-API", 3)
        resp = client.post(
            "/api/stickers/issue",
            json={"lot_id": lot.id, "holder_type": "INSPECTOR", "holder_id": inspector.id, "qty": 2},
            headers=headers(manager),
        )
        assert resp.status_code == 201
        assert resp.get_json()["sequence_numbers"] == ["10000", "10001"]

    def test_unknown_lot(self, client, headers, manager):
        resp = client.get("/api/stickers/lots/4242", headers=headers(manager))
        assert resp.status_code == 404


# =============================================================================
# TAGS AND JOB ORDERS
# =============================================================================


class TestJobOrderRoutes:

    def test_duplicate_tag_is_conflict(self, client, headers, manager):
        first = client.post("/api/tags", json={"tag_number": "TAG-A"}, headers=headers(manager))
        second = client.post("/api/tags", json={"tag_number": "TAG-A"}, headers=headers(manager))
        assert first.status_code == 201
        assert second.status_code == 409
        assert second.get_json()["type"] == "DuplicateTag"

    def test_create_job_order(self, client, headers, supervisor, customer):
        resp = client.post(
            "/api/job-orders",
            json={"client_id": customer.id, "service_types": ["Inspection", "NDT"]},
            headers=headers(supervisor),
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["status"] == "AWAITING_JOB_APPROVAL"
        assert body["service_types"] == ["Inspection", "NDT"]

    def test_body_cannot_choose_the_actor(self, client, headers, supervisor, manager, customer):
        resp = client.post(
            "/api/job-orders",
            json={"client_id": customer.id, "service_types": ["Inspection"], "actor_id": manager.id},
            headers=headers(supervisor),
        )
        assert resp.status_code == 201
        assert resp.get_json()["created_by_user_id"] == supervisor.id

    def test_offline_job_order_is_accepted(self, client, headers, manager, supervisor, customer):
        client.post("/api/sync/online", json={"online": False}, headers=headers(manager))

        resp = client.post(
            "/api/job-orders",
            json={"client_id": customer.id, "service_types": ["Inspection"], "offline_id": "offline-7-abc"},
            headers=headers(supervisor),
        )
        assert resp.status_code == 202
        assert resp.get_json() == {"deferred": True, "offline_id": "offline-7-abc", "queued_position": 1}

        back = client.post("/api/sync/online", json={"online": True}, headers=headers(manager))
        assert back.get_json()["replay"]["synced"] == 1

    def test_online_flag_must_be_boolean(self, client, headers, manager):
        resp = client.post("/api/sync/online", json={"online": "yes"}, headers=headers(manager))
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["type"] == "ValidationError"
        assert body["field"] == "online"

    @pytest.mark.parametrize("path,body", [
        ("/api/sync/online", {"online": False}),
        ("/api/sync/run", {}),
    ])
    def test_connectivity_controls_need_manage_stickers(self, client, headers, client_user, path, body):
        resp = client.post(path, json=body, headers=headers(client_user))
        assert resp.status_code == 403
        assert resp.get_json()["required_capability"] == "manageStickers"
        assert client.get("/api/sync/status", headers=headers(client_user)).get_json()["is_online"] is True

    def test_acting_for_lists_delegators(self, client, headers, gm, manager, accountant):
        client.put(
            f"/api/delegations/{manager.id}",
            json={"delegate_ids": [accountant.id]},
            headers=headers(gm),
        )

        resp = client.get("/api/delegations/acting-for", headers=headers(accountant))
        assert resp.status_code == 200
        assert [d["delegator_id"] for d in resp.get_json()["delegations"]] == [manager.id]

    def test_delegated_approval_header(self, client, headers, gm, manager, supervisor, accountant, make_job):
        client.put(
            f"/api/delegations/{manager.id}",
            json={"delegate_ids": [accountant.id]},
            headers=headers(gm),
        )
        job = make_job()

        resp = client.post(
            f"/api/job-orders/{job.id}/approve",
            headers=headers(accountant, on_behalf_of=manager),
        )
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "APPROVED"


# =============================================================================
# PAYMENTS AND CERTIFICATES
# =============================================================================


class TestPaymentRoutes:

    def test_payment_flow_and_public_verification(
        self, client, headers, supervisor, client_user, accountant, make_job
    ):
        job = make_job()
        job_order_service.approve(job.id, actor_id=supervisor.id)

        paid = client.post(
            f"/api/job-orders/{job.id}/payments",
            json={"method": "Bank Transfer"},
            headers=headers(client_user),
        )
        assert paid.status_code == 201
        assert paid.get_json()["status"] == "PENDING"

        confirmed = client.post(f"/api/job-orders/{job.id}/payments/confirm", headers=headers(accountant))
        assert confirmed.status_code == 200
        code = confirmed.get_json()["certificate"]["verification_code"]

        twice = client.post(f"/api/job-orders/{job.id}/payments/confirm", headers=headers(accountant))
        assert twice.status_code == 409

        verified = client.get(f"/api/certificates/verify/{code}")
        assert verified.status_code == 200
        assert verified.get_json()["valid"] is True

    def test_unknown_certificate(self, client, db_session):
        resp = client.get("/api/certificates/verify/CERT-1999-999")
        assert resp.status_code == 404


# =============================================================================
# CHANGES
# =============================================================================


class TestChangeFeed:

    def test_cursor_advances(self, client, headers, manager, make_lot):
        make_lot("LOT-API", 5)

        first = client.get("/api/changes?since=0", headers=headers(manager)).get_json()
        assert first["events"]

        again = client.get(f"/api/changes?since={first['cursor']}", headers=headers(manager)).get_json()
        assert again["events"] == []
        assert again["cursor"] == first["cursor"]
