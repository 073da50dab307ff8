"""
Pytest fixtures for RetailOps backend tests.

Provides test database setup, role/permission seeding, stock fixtures and a
test client with bearer tokens per role.
"""

import pytest
from retailops import create_app
from retailops.config import TestConfig
from retailops.extensions import db
from retailops.models import Store, User, Product
from retailops.services import inventory_service, permission_service, session_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
def setup_roles(db_session):
    """Setup default roles and permissions."""
    permission_service.create_default_roles()
    permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions()
    db_session.commit()


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(name="Main Store", location="High Street")
    db_session.add(store)
    db_session.commit()
    return store


def _make_user(db_session, store, username, role_name=None, is_active=True):
    user = User(
        username=username,
        email=f"{username}@retailops.test",
        store_id=store.id,
        is_active=is_active,
    )
    db_session.add(user)
    db_session.commit()
    if role_name:
        permission_service.assign_role(user, role_name)
    return user


@pytest.fixture(scope='function')
def admin(db_session, store, setup_roles):
    return _make_user(db_session, store, "admin", "admin")


@pytest.fixture(scope='function')
def manager(db_session, store, setup_roles):
    return _make_user(db_session, store, "manager", "manager")


@pytest.fixture(scope='function')
def staff(db_session, store, setup_roles):
    return _make_user(db_session, store, "staff", "staff")


@pytest.fixture(scope='function')
def outsider(db_session, store, setup_roles):
    """Active user without any role."""
    return _make_user(db_session, store, "outsider")


def _make_product(db_session, name, quantity, price_cents, cost_price_cents, sku=None):
    product = Product(
        sku=sku,
        name=name,
        quantity=quantity,
        price_cents=price_cents,
        cost_price_cents=cost_price_cents,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_a(db_session):
    """10 in stock, sells at 5.00, costs 3.00."""
    return _make_product(db_session, "Product A", 10, 500, 300, sku="PROD-A")


@pytest.fixture(scope='function')
def product_b(db_session):
    """Out of stock."""
    return _make_product(db_session, "Product B", 0, 800, 450, sku="PROD-B")


@pytest.fixture(scope='function')
def product_c(db_session):
    """5 in stock, sells at 2.50, costs 1.00."""
    return _make_product(db_session, "Product C", 5, 250, 100, sku="PROD-C")


@pytest.fixture(scope='function')
def stock_of(db_session):
    """Current on-hand quantity, read fresh from the database."""
    def _stock_of(product_id: int) -> int:
        return inventory_service.get_product(product_id).quantity
    return _stock_of


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(session_service.issue_session(admin))


@pytest.fixture(scope='function')
def manager_headers(manager):
    return auth_headers(session_service.issue_session(manager))


@pytest.fixture(scope='function')
def staff_headers(staff):
    return auth_headers(session_service.issue_session(staff))
