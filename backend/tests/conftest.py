"""
Pytest fixtures for MiMecanico backend tests.

Provides the application on in-memory SQLite, per-test table cleanup,
users for every role, and token helpers.
"""

import pytest

from mimecanico import create_app
from mimecanico.extensions import db
from mimecanico.models import Client, InventoryItem, LaborService, Vehicle
from mimecanico.models.auth import ROLE_ADMIN, ROLE_CLIENT, ROLE_MECHANIC, ROLE_RECEPTIONIST
from mimecanico.services import auth_service, token_service

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TAX_RATE_BPS': 1200,
        'INVOICE_DUE_DAYS': 30,
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
    """Fresh data for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def make_user(username: str, role: str, **kwargs):
    return auth_service.create_user(
        username,
        f"{username}@taller.test",
        PASSWORD,
        username.capitalize(),
        "Tester",
        role=role,
        **kwargs,
    )


@pytest.fixture
def admin_user(db_session):
    return make_user("admin", ROLE_ADMIN)


@pytest.fixture
def receptionist_user(db_session):
    return make_user("recepcion", ROLE_RECEPTIONIST)


@pytest.fixture
def mechanic_user(db_session):
    return make_user("mecanico", ROLE_MECHANIC)


@pytest.fixture
def client_user(db_session):
    """A client-role user; owns one Client row."""
    return make_user("cliente", ROLE_CLIENT)


@pytest.fixture
def workshop_client(client_user):
    return Client.query.filter_by(user_id=client_user.id).one()


@pytest.fixture
def other_client(db_session):
    user = make_user("otro", ROLE_CLIENT)
    return Client.query.filter_by(user_id=user.id).one()


@pytest.fixture
def vehicle(db_session, workshop_client):
    v = Vehicle(client_id=workshop_client.id, plate_number="ABC-1234", brand="Toyota", model="Corolla", year=2018)
    db_session.add(v)
    db_session.commit()
    return v


@pytest.fixture
def brake_pads(db_session):
    """Inventory item with 10 units on hand, recorded through the ledger."""
    from mimecanico.services import inventory_service

    return inventory_service.create_item({
        "code": "BRK-001",
        "name": "Brake pads",
        "unit_price_cents": 1500,
        "cost_price_cents": 900,
        "stock_quantity": 10,
        "min_stock_level": 2,
    })


@pytest.fixture
def oil_change(db_session):
    service = LaborService(code="SRV-OIL", name="Oil change", default_price_cents=2000)
    db_session.add(service)
    db_session.commit()
    return service


def token_for(user) -> str:
    return token_service.issue_tokens(user)["token"]


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(token_for(admin_user))


@pytest.fixture
def receptionist_headers(receptionist_user):
    return auth_headers(token_for(receptionist_user))


@pytest.fixture
def mechanic_headers(mechanic_user):
    return auth_headers(token_for(mechanic_user))


@pytest.fixture
def client_headers(client_user):
    return auth_headers(token_for(client_user))


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user through the login route."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def stock_of(item_id: int) -> int:
    db.session.expire_all()
    return db.session.get(InventoryItem, item_id).stock_quantity
