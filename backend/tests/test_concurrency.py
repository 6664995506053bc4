"""
Concurrent purchase tests.

Runs against a file-backed SQLite database so that every thread gets its own
connection and the stock decrement is decided by the database, not by a
shared session.
"""

import threading
from decimal import Decimal

import pytest

from shopadmin import create_app
from shopadmin.extensions import db
from shopadmin.models import Customer, Product, Purchase
from shopadmin.services import auth_service, catalog_service, purchase_service
from shopadmin.services.purchase_service import InsufficientStockError
from shopadmin.validation import ValidationError


@pytest.fixture
def race_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
        'PURCHASE_RETRY_ATTEMPTS': 50,
    })
    with app.app_context():
        db.create_all()

        owner = auth_service.create_admin(email="race@shop.test", name="Race Owner", password="secret123")
        customer = Customer(name="Racer", email="racer@client.test")
        db.session.add(customer)
        db.session.commit()

        product = catalog_service.create_product(
            patch={
                "name": "Limited Edition",
                "description": "Only ten of these exist",
                "price": Decimal("25.00"),
                "stock": 10,
                "images": [{"image_url": "https://img.shop.test/limited.png"}],
            },
            acting_admin_id=owner.id,
        )
        app.config["RACE_IDS"] = {"product_id": product["id"], "customer_id": customer.id}
        db.session.remove()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _buy_concurrently(app, buyers, quantity):
    ids = app.config["RACE_IDS"]
    barrier = threading.Barrier(buyers)
    outcomes = []
    lock = threading.Lock()

    def buyer():
        with app.app_context():
            barrier.wait()
            try:
                purchase_service.create_purchase(
                    customer_id=ids["customer_id"], product_id=ids["product_id"], quantity=quantity
                )
                outcome = "ok"
            except (InsufficientStockError, ValidationError):
                outcome = "rejected"
            except Exception as exc:  # surfaced in the assertion below
                outcome = f"error: {exc!r}"
            finally:
                db.session.remove()
            with lock:
                outcomes.append(outcome)

    threads = [threading.Thread(target=buyer) for _ in range(buyers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def test_concurrent_purchases_never_oversell(race_app):
    outcomes = _buy_concurrently(race_app, buyers=6, quantity=3)

    assert sorted(outcomes) == ["ok"] * 3 + ["rejected"] * 3

    with race_app.app_context():
        product_id = race_app.config["RACE_IDS"]["product_id"]
        assert db.session.get(Product, product_id).stock == 1
        purchases = db.session.query(Purchase).all()
        assert len(purchases) == 3
        assert all(p.total_price == Decimal("75.00") for p in purchases)


def test_exact_stock_can_be_fully_sold(race_app):
    outcomes = _buy_concurrently(race_app, buyers=5, quantity=2)

    assert outcomes.count("ok") == 5

    with race_app.app_context():
        product_id = race_app.config["RACE_IDS"]["product_id"]
        assert db.session.get(Product, product_id).stock == 0
