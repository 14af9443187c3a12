"""
Pytest fixtures for till backend tests.

Provides an in-memory application, per-test table cleanup, users,
request contexts and authenticated test-client headers.
"""

import pytest
from till import create_app
from till.extensions import db
from till.services.auth_service import create_user
from till.services.order_session_service import RequestContext


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI='sqlite:///:memory:',
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
    )

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


@pytest.fixture(scope='function')
def cashier(db_session):
    """Create the primary till user."""
    return create_user(username="cashier_a", password=TEST_PASSWORD, rounds=4)


@pytest.fixture(scope='function')
def other_cashier(db_session):
    """Create a second till user sharing the same terminal."""
    return create_user(username="cashier_b", password=TEST_PASSWORD, rounds=4)


@pytest.fixture(scope='function')
def ctx(cashier):
    """Request context for the primary cashier."""
    return RequestContext(user_id=cashier.id, correlation_id="test-correlation")


def make_item(n: int, **overrides) -> dict:
    """Build a valid order line; n varies ids and price."""
    item = {
        "id": f"line-{n}",
        "variantId": n,
        "productId": 100 + n,
        "name": f"Item {n}",
        "price": 2.5 * n,
        "quantity": 1,
        "effectiveTaxRate": 0.1,
    }
    item.update(overrides)
    return item


def get_auth_token(client, username: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def cashier_headers(client, cashier):
    token = get_auth_token(client, cashier.username)
    assert token, "login failed for cashier fixture"
    return auth_headers(token)
