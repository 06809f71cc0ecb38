"""
Pytest fixtures for agrisupply backend tests.

Provides the test app on in-memory SQLite, a per-test table wipe, owner
accounts for tenancy checks, customer/product factories and helpers for
authenticated API calls.
"""

import pytest

from agrisupply import create_app
from agrisupply.extensions import db
from agrisupply.models import User, Customer, Product, Promotion
from agrisupply.services.auth_service import hash_password
from agrisupply.time_utils import utcnow, days_from_now


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
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


def _make_user(db_session, username: str) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        business_name=f"{username.title()} Agro",
        password_hash=hash_password(PASSWORD),
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner(db_session):
    """Dealer account A."""
    return _make_user(db_session, "dealer_a")


@pytest.fixture(scope='function')
def other_owner(db_session):
    """Dealer account B, for tenancy checks."""
    return _make_user(db_session, "dealer_b")


@pytest.fixture(scope='function')
def make_customer(db_session):
    def _make(owner, **overrides) -> Customer:
        fields = {
            "name": "Ramesh Patil",
            "phone": "9876543210",
            "business_type": "Farmer",
            "customer_group": "regular",
            "credit_limit_cents": 0,
            "payment_terms_days": 0,
        }
        fields.update(overrides)
        customer = Customer(created_by_user_id=owner.id, **fields)
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(owner, **overrides) -> Product:
        fields = {
            "name": "Hybrid Paddy Seed",
            "category": "Seeds",
            "brand": "Mahyco",
            "price_cents": 5000,
            "stock_quantity": 100,
            "minimum_stock": 10,
        }
        fields.update(overrides)
        product = Product(created_by_user_id=owner.id, **fields)
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_promotion(db_session):
    def _make(owner, **overrides) -> Promotion:
        now = utcnow()
        fields = {
            "name": "Kharif Offer",
            "code": "KHARIF10",
            "promo_type": "percentage",
            "discount_value": 1000,
            "start_date": days_from_now(-1, now),
            "end_date": days_from_now(30, now),
        }
        fields.update(overrides)
        promotion = Promotion(created_by_user_id=owner.id, **fields)
        db_session.add(promotion)
        db_session.commit()
        return promotion
    return _make


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
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
def owner_headers(client, owner):
    return auth_headers(get_auth_token(client, owner.username))
