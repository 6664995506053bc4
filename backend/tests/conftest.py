"""
Pytest fixtures for shopadmin backend tests.

Provides the test app on in-memory SQLite, a per-test table wipe, catalog
and customer factories, and bearer-token headers for the test client.
"""

from decimal import Decimal

import pytest

from shopadmin import create_app
from shopadmin.extensions import db
from shopadmin.models import Category, Customer, Product, Purchase
from shopadmin.services import auth_service, catalog_service, session_service
from shopadmin.services.mail_service import outbox
from shopadmin.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'JOB_BACKOFF_BASE': 0,
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
        outbox().clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.expunge_all()


@pytest.fixture(scope='function')
def admin(db_session):
    """Admin that owns the catalog in most tests."""
    return auth_service.create_admin(email="owner@shop.test", name="Owner Admin", password="secret123")


@pytest.fixture(scope='function')
def other_admin(db_session):
    return auth_service.create_admin(email="other@shop.test", name="Other Admin", password="secret123")


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Carla Client", email="carla@client.test", phone="+56912345678")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def make_category(db_session):
    def _make(owner, name="Books", description="Printed and digital books"):
        data = catalog_service.create_category(
            patch={"name": name, "description": description},
            acting_admin_id=owner.id,
        )
        return db_session.get(Category, data["id"])
    return _make


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(owner, name="Widget", price="10.00", stock=10, categories=(), images=None):
        data = catalog_service.create_product(
            patch={
                "name": name,
                "description": f"{name} used in tests",
                "price": Decimal(price),
                "stock": stock,
                "images": images or [{"image_url": "https://img.shop.test/widget.png", "caption": None}],
                "category_ids": [c.id for c in categories],
            },
            acting_admin_id=owner.id,
        )
        return db_session.get(Product, data["id"])
    return _make


@pytest.fixture(scope='function')
def make_purchase(db_session):
    """Insert a purchase row directly (no workflow side effects)."""
    def _make(customer, product, quantity=1, purchased_at=None, total=None):
        purchase = Purchase(
            customer_id=customer.id,
            product_id=product.id,
            quantity=quantity,
            total_price=Decimal(total) if total is not None else product.price * quantity,
            purchased_at=purchased_at or utcnow(),
        )
        db_session.add(purchase)
        db_session.commit()
        return purchase
    return _make


@pytest.fixture(scope='function')
def auth_headers(db_session):
    def _headers(admin):
        _, token = session_service.create_session(admin_id=admin.id)
        return {"Authorization": f"Bearer {token}"}
    return _headers
