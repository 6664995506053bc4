"""
Tests for the purchase workflow.

Covers pricing, stock validation and decrement, rollback on failure, the
stock audit entry and first-purchase notification enqueueing.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from shopadmin.models import AuditLog, Job, Product, Purchase
from shopadmin.services import purchase_service
from shopadmin.services.purchase_service import InsufficientStockError, is_first_purchase_of_product
from shopadmin.validation import NotFoundError, ValidationError


def _stock(db_session, product_id):
    return db_session.query(Product.stock).filter(Product.id == product_id).scalar()


class TestCreatePurchase:
    def test_total_price_is_quantity_times_unit_price(self, db_session, admin, customer, make_product):
        product = make_product(admin, price="12.50", stock=10)

        purchase = purchase_service.create_purchase(
            customer_id=customer.id, product_id=product.id, quantity=3
        )

        assert purchase.total_price == Decimal("37.50")
        assert purchase.unit_price == Decimal("12.50")
        assert purchase.purchased_at is not None

    def test_decrements_stock_and_bumps_version(self, db_session, admin, customer, make_product):
        product = make_product(admin, stock=10)
        version_before = product.version_id

        purchase_service.create_purchase(customer_id=customer.id, product_id=product.id, quantity=4)

        db_session.refresh(product)
        assert product.stock == 6
        assert product.version_id == version_before + 1

    def test_total_price_not_recomputed_after_price_change(self, db_session, admin, customer, make_product):
        from shopadmin.services import catalog_service

        product = make_product(admin, price="10.00", stock=10)
        purchase = purchase_service.create_purchase(customer_id=customer.id, product_id=product.id, quantity=2)

        catalog_service.update_product(product_id=product.id, patch={"price": Decimal("99.00")})

        stored = db_session.get(Purchase, purchase.id)
        db_session.refresh(stored)
        assert stored.total_price == Decimal("20.00")

    def test_quantity_above_stock_fails_without_side_effects(self, db_session, admin, customer, make_product):
        product = make_product(admin, stock=10)

        with pytest.raises(ValidationError, match="insufficient stock"):
            purchase_service.create_purchase(customer_id=customer.id, product_id=product.id, quantity=15)

        assert db_session.query(Purchase).count() == 0
        assert _stock(db_session, product.id) == 10

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_quantity_must_be_positive(self, db_session, admin, customer, make_product, quantity):
        product = make_product(admin)
        with pytest.raises(ValidationError):
            purchase_service.create_purchase(customer_id=customer.id, product_id=product.id, quantity=quantity)

    def test_missing_product_is_a_validation_error(self, db_session, customer):
        with pytest.raises(ValidationError, match="product 9999 does not exist"):
            purchase_service.create_purchase(customer_id=customer.id, product_id=9999, quantity=1)

    def test_missing_customer(self, db_session, admin, make_product):
        product = make_product(admin)
        with pytest.raises(NotFoundError):
            purchase_service.create_purchase(customer_id=9999, product_id=product.id, quantity=1)

    def test_lost_race_raises_and_rolls_back_purchase(self, db_session, admin, customer, make_product, monkeypatch):
        """Stock taken between validation and decrement aborts the whole purchase."""
        product = make_product(admin, stock=5)
        real_decrement = purchase_service._decrement_stock

        def concurrent_buyer_first(product_id, quantity):
            db_session.execute(
                Product.__table__.update().where(Product.id == product_id).values(stock=1)
            )
            real_decrement(product_id, quantity)

        monkeypatch.setattr(purchase_service, "_decrement_stock", concurrent_buyer_first)

        with pytest.raises(InsufficientStockError) as excinfo:
            purchase_service.create_purchase(customer_id=customer.id, product_id=product.id, quantity=3)

        assert excinfo.value.current_stock == 1
        assert str(excinfo.value) == "Stock insuficiente. Stock actual: 1"
        assert db_session.query(Purchase).count() == 0
        # the simulated concurrent write was part of the rolled back unit too
        assert _stock(db_session, product.id) == 5

    def test_stock_change_is_audited(self, db_session, admin, other_admin, customer, make_product):
        product = make_product(admin, stock=10)

        purchase_service.create_purchase(
            customer_id=customer.id, product_id=product.id, quantity=2, acting_admin_id=other_admin.id
        )

        log = (
            db_session.query(AuditLog)
            .filter_by(auditable_type="Product", auditable_id=product.id, action="updated")
            .one()
        )
        assert log.changes_data == {"stock": [10, 8]}
        assert log.admin_id == other_admin.id

    def test_stock_change_defaults_to_owner_attribution(self, db_session, admin, customer, make_product):
        product = make_product(admin, stock=10)

        purchase_service.create_purchase(customer_id=customer.id, product_id=product.id, quantity=1)

        log = db_session.query(AuditLog).filter_by(action="updated", auditable_id=product.id).one()
        assert log.admin_id == admin.id


class TestFirstPurchase:
    def test_first_purchase_enqueues_exactly_one_notification(self, db_session, admin, customer, make_product):
        product = make_product(admin, stock=10)

        first = purchase_service.create_purchase(customer_id=customer.id, product_id=product.id, quantity=1)
        purchase_service.create_purchase(customer_id=customer.id, product_id=product.id, quantity=1)

        jobs = db_session.query(Job).filter_by(name="first_purchase_notification").all()
        assert len(jobs) == 1
        assert jobs[0].args == [first.id]
        assert jobs[0].queue == "default"

    def test_each_product_gets_its_own_first_purchase(self, db_session, admin, customer, make_product):
        a = make_product(admin, name="Alpha")
        b = make_product(admin, name="Beta")

        purchase_service.create_purchase(customer_id=customer.id, product_id=a.id, quantity=1)
        purchase_service.create_purchase(customer_id=customer.id, product_id=b.id, quantity=1)

        assert db_session.query(Job).filter_by(name="first_purchase_notification").count() == 2

    def test_backdated_purchase_takes_over_first_place(self, db_session, admin, customer, make_product):
        product = make_product(admin, stock=10)
        later = purchase_service.create_purchase(
            customer_id=customer.id, product_id=product.id, quantity=1,
            purchased_at=datetime(2024, 5, 2, 12, 0),
        )
        earlier = purchase_service.create_purchase(
            customer_id=customer.id, product_id=product.id, quantity=1,
            purchased_at=datetime(2024, 5, 1, 12, 0),
        )

        assert is_first_purchase_of_product(earlier)
        assert not is_first_purchase_of_product(later)
        assert db_session.query(Job).filter_by(name="first_purchase_notification").count() == 2

    def test_identical_timestamps_break_ties_by_id(self, db_session, admin, customer, make_product, make_purchase):
        product = make_product(admin, stock=10)
        at = datetime(2024, 1, 1, 10, 0)
        one = make_purchase(customer, product, purchased_at=at)
        two = make_purchase(customer, product, purchased_at=at)

        assert is_first_purchase_of_product(one)
        assert not is_first_purchase_of_product(two)

    def test_enqueue_failure_does_not_abort_purchase(self, db_session, admin, customer, make_product, monkeypatch):
        from shopadmin.jobs import jobs

        def broken_enqueue(*args, **kwargs):
            raise RuntimeError("queue unavailable")

        monkeypatch.setattr(jobs, "enqueue", broken_enqueue)
        product = make_product(admin, stock=10)

        purchase = purchase_service.create_purchase(customer_id=customer.id, product_id=product.id, quantity=1)

        assert db_session.get(Purchase, purchase.id) is not None
        assert _stock(db_session, product.id) == 9


class TestListPurchases:
    def test_filters_and_serialization(self, db_session, admin, customer, make_product, make_category, make_purchase):
        books = make_category(admin, name="Books")
        book = make_product(admin, name="Novel", categories=[books])
        pen = make_product(admin, name="Pen")
        make_purchase(customer, book, purchased_at=datetime(2024, 1, 1, 10, 0))
        make_purchase(customer, pen, purchased_at=datetime(2024, 1, 2, 10, 0))

        result = purchase_service.list_purchases(filters={"category_id": str(books.id)})

        assert result["pagination"]["total"] == 1
        row = result["purchases"][0]
        assert row["product"]["name"] == "Novel"
        assert row["product"]["categories"] == [{"id": books.id, "name": "Books"}]
        assert row["product"]["admin"] == {"id": admin.id, "name": admin.name}
        assert row["customer"]["email"] == customer.email
        assert row["unit_price"] == 10.0
        assert result["filters_applied"] == {"category_id": str(books.id)}

    def test_newest_first(self, db_session, admin, customer, make_product, make_purchase):
        product = make_product(admin)
        old = make_purchase(customer, product, purchased_at=datetime(2024, 1, 1))
        new = make_purchase(customer, product, purchased_at=datetime(2024, 2, 1))

        ids = [p["id"] for p in purchase_service.list_purchases()["purchases"]]
        assert ids == [new.id, old.id]
