"""
Pytest fixtures for compliance backend tests.

Provides an in-memory application per session, a wiped database per test,
one user per role and small factories for lots, holdings and job orders.
"""

import pytest

from compliance import create_app
from compliance.extensions import db
from compliance.models import Client, Region, User
from compliance.services import allocation_service, job_order_service, lot_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_user(db_session, name, role, **extra):
    user = User(
        name=name,
        email=f"{name.lower().replace(' ', '.')}@compliance.test",
        roles=[role],
        current_role=role,
        **extra,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def region(db_session):
    region = Region(name="North Region", code="NORTH")
    db_session.add(region)
    db_session.commit()
    return region


@pytest.fixture(scope='function')
def gm(db_session):
    return _make_user(db_session, "Grace Gm", "gm")


@pytest.fixture(scope='function')
def manager(db_session):
    return _make_user(db_session, "Mona Manager", "manager")


@pytest.fixture(scope='function')
def supervisor(db_session):
    return _make_user(db_session, "Sam Supervisor", "supervisor")


@pytest.fixture(scope='function')
def accountant(db_session):
    return _make_user(db_session, "Abe Accountant", "accountant")


@pytest.fixture(scope='function')
def inspector(db_session, region):
    return _make_user(db_session, "Ivy Inspector", "inspector", region_id=region.id)


@pytest.fixture(scope='function')
def other_inspector(db_session, region):
    return _make_user(db_session, "Otto Inspector", "inspector", region_id=region.id)


@pytest.fixture(scope='function')
def client_user(db_session):
    return _make_user(db_session, "Carla Client", "client")


@pytest.fixture(scope='function')
def customer(db_session, client_user, region):
    """Client organisation whose portal login is client_user."""
    record = Client(
        name="Acme Cranes Ltd",
        email=client_user.email,
        user_id=client_user.id,
        region_id=region.id,
        business_type="Company",
    )
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture(scope='function')
def make_lot(manager):
    """Factory: create a Large lot through the lot service."""
    def _make(lot_number, qty, size="Large", start_sequence=None):
        return lot_service.create_lot(
            lot_number=lot_number,
            size=size,
            qty=qty,
            start_sequence=start_sequence,
            actor_id=manager.id,
        )
    return _make


@pytest.fixture(scope='function')
def inspector_holding(make_lot, manager, inspector):
    """Inspector holding 5 stickers of lot LOT-H."""
    lot = make_lot("LOT-H", 20)
    return allocation_service.issue_stock(
        lot_id=lot.id,
        holder_type="INSPECTOR",
        holder_id=inspector.id,
        qty=5,
        actor_id=manager.id,
    )


@pytest.fixture(scope='function')
def make_job(supervisor, customer):
    """Factory: job order created by the supervisor for the fixture client."""
    def _make(actor=None, offline_id=None, **payload):
        payload.setdefault("client_id", customer.id)
        payload.setdefault("service_types", ["Inspection"])
        payload.setdefault("amount_cents", 50000)
        return job_order_service.create_job_order(
            actor_id=(actor or supervisor).id, payload=payload, offline_id=offline_id
        )
    return _make


def actor_headers(user, on_behalf_of=None) -> dict:
    """Helper to create actor headers for a user."""
    headers = {"X-Actor-Id": str(user.id)}
    if on_behalf_of is not None:
        headers["X-On-Behalf-Of"] = str(on_behalf_of.id)
    return headers


@pytest.fixture(scope='function')
def headers():
    return actor_headers
