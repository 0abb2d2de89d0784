"""
Pytest fixtures for RepairDesk backend tests.

Provides the app (in-memory SQLite), per-test table wipes, staff users for
every role, portal clients, and a recording notifier.
"""

import pytest
from repairdesk import create_app
from repairdesk.extensions import db
from repairdesk.permissions import ADMINISTRATOR, RECEPTIONIST, TECHNICIAN, SALES
from repairdesk.services import lifecycle_service, order_service
from repairdesk.services.auth_service import create_client, create_default_roles, create_user
from repairdesk.services.lifecycle_service import Actor
from repairdesk.services.notification_service import set_notifier
from repairdesk.services.token_service import issue_staff_token


PASSWORD = "Password123!"


def make_config(**overrides) -> dict:
    config = {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'JWT_SECRET': 'test-jwt-secret',
    }
    config.update(overrides)
    return config


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    invoices_dir = tmp_path_factory.mktemp("invoices")
    app = create_app(make_config(INVOICE_STORAGE_DIR=str(invoices_dir)))

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

        lifecycle_service.ensure_order_statuses()
        create_default_roles()

        yield db.session

        # Cleanup after test
        db.session.rollback()


class RecordingNotifier:
    """Notifier that records calls and can be told to fail."""

    def __init__(self):
        self.calls = []
        self.fail = set()

    def _record(self, name, **kwargs):
        if name in self.fail:
            raise RuntimeError(f"{name} unavailable")
        self.calls.append((name, kwargs))

    def send_proforma(self, **kwargs):
        self._record("send_proforma", **kwargs)

    def send_proforma_decision(self, **kwargs):
        self._record("send_proforma_decision", **kwargs)

    def send_invoice(self, **kwargs):
        self._record("send_invoice", **kwargs)

    def send_ticket_update(self, **kwargs):
        self._record("send_ticket_update", **kwargs)

    def names(self):
        return [name for name, _ in self.calls]


@pytest.fixture(autouse=True)
def notifier(app):
    recorder = RecordingNotifier()
    set_notifier(app, recorder)
    return recorder


# =============================================================================
# Staff
# =============================================================================

def make_staff(username, *roles):
    return create_user(username, f"{username}@repairdesk.test", PASSWORD, roles=roles)


@pytest.fixture
def admin(db_session):
    return make_staff("admin", ADMINISTRATOR)


@pytest.fixture
def receptionist(db_session):
    return make_staff("reception", RECEPTIONIST)


@pytest.fixture
def technician(db_session):
    return make_staff("tech", TECHNICIAN)


@pytest.fixture
def sales(db_session):
    return make_staff("sales", SALES)


def auth_headers(user) -> dict:
    """Bearer header for a staff user (token carries the user's current roles)."""
    return {'Authorization': f'Bearer {issue_staff_token(user)}'}


# =============================================================================
# Clients
# =============================================================================

@pytest.fixture
def customer(db_session):
    return create_client("Maria Perez", email="maria@example.com", password=PASSWORD, id_number="0102030405")


@pytest.fixture
def other_customer(db_session):
    return create_client("Luis Gomez", email="luis@example.com", password=PASSWORD, id_number="0911223344")


@pytest.fixture
def equipment(db_session, customer):
    return order_service.register_equipment(customer.id, "Laptop", brand="Lenovo", model="T14", serial_number="SN-1")


def login_client(app, email, password=PASSWORD):
    """Return a test client holding a portal session cookie."""
    portal = app.test_client()
    resp = portal.post('/api/auth/client/login', json={'email': email, 'password': password})
    assert resp.status_code == 200, resp.json
    return portal


# =============================================================================
# Orders
# =============================================================================

@pytest.fixture
def order(db_session, customer, equipment, receptionist, technician):
    return order_service.create_order(
        client_id=customer.id,
        equipment_id=equipment.id,
        receptionist_id=receptionist.id,
        technician_id=technician.id,
        notes="Does not power on",
    )


def walk_to_completed(order_id, *, technician, sales, client_id, price="112.00"):
    """Drive an order through the happy path up to COMPLETED."""
    tech = Actor(user_id=technician.id)
    seller = Actor(user_id=sales.id)
    order_service.set_diagnosis(order_id, "Blown capacitor", actor=tech)
    order_service.set_proforma(order_id, "Capacitor kit", price)
    order_service.send_proforma(order_id, actor=seller)
    order_service.respond_to_proforma(order_id, client_id, True)
    order_service.start_service(order_id, actor=tech)
    return order_service.finish_service(order_id, actor=tech, final_notes="Replaced capacitor")


@pytest.fixture
def file_app(tmp_path):
    """App on a file-backed SQLite DB so threads get real separate connections."""
    app = create_app(make_config(
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        SQLALCHEMY_ENGINE_OPTIONS={'connect_args': {'timeout': 30}},
        INVOICE_STORAGE_DIR=str(tmp_path / 'invoices'),
    ))
    with app.app_context():
        db.create_all()
        lifecycle_service.ensure_order_statuses()
        create_default_roles()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()
