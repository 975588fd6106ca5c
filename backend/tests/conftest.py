"""
Pytest fixtures for Stockroom backend tests.

Provides an in-memory database, seeded roles, one user per role, identity
headers for the test client, and a few inventory fixtures.
"""

import pytest
from sqlalchemy import func

from stockroom import create_app
from stockroom.config import Config
from stockroom.extensions import db
from stockroom.models import Category, Role, StockMovement, User
from stockroom.services import inventory_service, permission_service


OWNER_EMAIL = "owner@stockroom.test"


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    ELEVATED_ACCESS_EMAIL = OWNER_EMAIL
    IDENTITY_PROVIDER_SECRET_KEY = "sk_test_key"
    IDENTITY_PROVIDER_PUBLISHABLE_KEY = "pk_test_key"
    SALES_TAX_RATE_BPS = 1600


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

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
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def setup_roles(db_session):
    """Setup default roles and permissions."""
    permission_service.seed_roles_and_permissions()
    db_session.commit()


def make_user(db_session, role_name: str, *, external_id: str, email: str) -> User:
    role = db_session.query(Role).filter_by(name=role_name).one()
    user = User(external_id=external_id, email=email, first_name=role_name.title(), role_id=role.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session, setup_roles):
    return make_user(db_session, "admin", external_id="ext_admin", email="admin@stockroom.test")


@pytest.fixture(scope='function')
def manager_user(db_session, setup_roles):
    return make_user(db_session, "manager", external_id="ext_manager", email="manager@stockroom.test")


@pytest.fixture(scope='function')
def operator_user(db_session, setup_roles):
    return make_user(db_session, "operator", external_id="ext_operator", email="operator@stockroom.test")


@pytest.fixture(scope='function')
def viewer_user(db_session, setup_roles):
    return make_user(db_session, "viewer", external_id="ext_viewer", email="viewer@stockroom.test")


def identity_headers(external_id: str, email: str | None = None, **names) -> dict:
    """Headers an identity gateway would forward for an authenticated caller."""
    headers = {"X-Identity-Subject": external_id}
    if email:
        headers["X-Identity-Email"] = email
    if names.get("first_name"):
        headers["X-Identity-First-Name"] = names["first_name"]
    if names.get("last_name"):
        headers["X-Identity-Last-Name"] = names["last_name"]
    return headers


def headers_for(user: User) -> dict:
    return identity_headers(user.external_id, user.email)


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return headers_for(admin_user)


@pytest.fixture(scope='function')
def manager_headers(manager_user):
    return headers_for(manager_user)


@pytest.fixture(scope='function')
def operator_headers(operator_user):
    return headers_for(operator_user)


@pytest.fixture(scope='function')
def viewer_headers(viewer_user):
    return headers_for(viewer_user)


@pytest.fixture(scope='function')
def category(db_session):
    category = Category(name="Hardware", description="Tools and fasteners")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def item(db_session, category):
    """Item with 10 units on hand (INITIAL movement), min level 5, price 15.00, cost 10.00."""
    return inventory_service.create_item(patch={
        "sku": "HW-001",
        "name": "Claw Hammer",
        "price_cents": 1500,
        "cost_cents": 1000,
        "quantity": 10,
        "min_stock_level": 5,
        "category_id": category.id,
    })


@pytest.fixture(scope='function')
def second_item(db_session, category):
    return inventory_service.create_item(patch={
        "sku": "HW-002",
        "name": "Box of Nails",
        "price_cents": 500,
        "cost_cents": 200,
        "quantity": 100,
        "category_id": category.id,
    })


def movement_sum(item_id: int) -> int:
    total = db.session.query(func.coalesce(func.sum(StockMovement.quantity_delta), 0)).filter(
        StockMovement.inventory_item_id == item_id
    ).scalar()
    return int(total)


def reload(model, pk):
    db.session.expire_all()
    return db.session.get(model, pk)
