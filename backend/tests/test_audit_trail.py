"""
Audit trail tests.

One row per observed transition, correct attribution, failure isolation
and the read side (listing, recent, per entity).
"""

from datetime import datetime
from decimal import Decimal

import pytest

from shopadmin.models import AuditLog, ProductCategory
from shopadmin.services import audit_service, catalog_service
from shopadmin.validation import ValidationError


def _logs(db_session, **filters):
    return db_session.query(AuditLog).filter_by(**filters).order_by(AuditLog.id).all()


class TestProductLifecycle:
    def test_create_writes_one_created_row(self, db_session, admin, make_product):
        product = make_product(admin, name="Lamp")

        logs = _logs(db_session, auditable_type="Product", auditable_id=product.id)

        assert [log.action for log in logs] == ["created"]
        assert logs[0].admin_id == admin.id
        assert logs[0].changes_data["name"] == "Lamp"
        assert logs[0].changes_data["price"] == "10.00"

    def test_update_writes_changed_fields_only(self, db_session, admin, make_product):
        product = make_product(admin, name="Lamp", price="10.00")

        catalog_service.update_product(
            product_id=product.id, patch={"name": "Desk Lamp", "price": Decimal("12.00")}
        )

        log = _logs(db_session, auditable_id=product.id, action="updated")[0]
        assert log.changes_data == {"name": ["Lamp", "Desk Lamp"], "price": ["10.00", "12.00"]}

    def test_noop_update_writes_nothing(self, db_session, admin, make_product):
        product = make_product(admin, name="Lamp")

        catalog_service.update_product(product_id=product.id, patch={"name": "Lamp"})

        assert _logs(db_session, auditable_id=product.id, action="updated") == []

    def test_acting_admin_is_attributed(self, db_session, admin, other_admin, make_product):
        product = make_product(admin)

        catalog_service.update_product(
            product_id=product.id, patch={"stock": 3}, acting_admin_id=other_admin.id
        )

        log = _logs(db_session, auditable_id=product.id, action="updated")[0]
        assert log.admin_id == other_admin.id

    def test_delete_keeps_only_the_deleted_row(self, db_session, admin, customer, make_product, make_purchase):
        product = make_product(admin, name="Lamp")
        make_purchase(customer, product)
        catalog_service.update_product(product_id=product.id, patch={"name": "Old Lamp"})
        product_id = product.id

        catalog_service.delete_product(product_id=product_id)

        logs = _logs(db_session, auditable_type="Product", auditable_id=product_id)
        assert [log.action for log in logs] == ["deleted"]
        assert logs[0].changes_data["name"] == "Old Lamp"
        assert logs[0].admin_id == admin.id


class TestCategoryLifecycle:
    def test_create_update_delete(self, db_session, admin, make_category):
        category = make_category(admin, name="Toys")
        category_id = category.id

        catalog_service.update_category(category_id=category_id, patch={"description": "Fun things"})
        updated = _logs(db_session, auditable_type="Category", auditable_id=category_id)
        assert [log.action for log in updated] == ["created", "updated"]
        assert updated[1].changes_data == {"description": ["Printed and digital books", "Fun things"]}

        catalog_service.delete_category(category_id=category_id)
        remaining = _logs(db_session, auditable_type="Category", auditable_id=category_id)
        assert [log.action for log in remaining] == ["deleted"]

    def test_noop_update_writes_nothing(self, db_session, admin, make_category):
        category = make_category(admin, name="Toys")

        catalog_service.update_category(category_id=category.id, patch={"name": "Toys"})

        assert _logs(db_session, auditable_id=category.id, action="updated") == []


class TestLinkEvents:
    def test_associate_and_disassociate_attributed_to_product_owner(
        self, db_session, admin, other_admin, make_category, make_product
    ):
        product = make_product(admin)
        category = make_category(other_admin, name="Garden")

        catalog_service.associate_category(product_id=product.id, category_id=category.id)
        link_id = db_session.query(ProductCategory.id).filter_by(
            product_id=product.id, category_id=category.id
        ).scalar()
        catalog_service.disassociate_category(product_id=product.id, category_id=category.id)

        logs = _logs(db_session, auditable_type="ProductCategory", auditable_id=link_id)
        assert [log.action for log in logs] == ["category_associated", "category_disassociated"]
        assert {log.admin_id for log in logs} == {admin.id}
        assert logs[1].changes_data == {"category_id": category.id, "category_name": "Garden"}

    def test_category_ids_on_update_are_diffed_into_link_events(self, db_session, admin, make_category, make_product):
        a = make_category(admin, name="A")
        b = make_category(admin, name="B")
        c = make_category(admin, name="C")
        product = make_product(admin, categories=[a, b])

        catalog_service.update_product(product_id=product.id, patch={"category_ids": [b.id, c.id]})

        actions = [
            (log.action, log.changes_data["category_name"])
            for log in _logs(db_session, auditable_type="ProductCategory")
        ]
        assert actions == [
            ("category_associated", "A"),
            ("category_associated", "B"),
            ("category_disassociated", "A"),
            ("category_associated", "C"),
        ]
        assert _logs(db_session, auditable_id=product.id, action="updated") == []

    def test_deleting_product_drops_link_history(self, db_session, admin, make_category, make_product):
        category = make_category(admin, name="A")
        product = make_product(admin, categories=[category])

        catalog_service.delete_product(product_id=product.id)

        assert _logs(db_session, auditable_type="ProductCategory") == []


class TestFailureIsolation:
    def test_failed_audit_write_does_not_abort_mutation(self, db_session, admin, make_product, monkeypatch):
        product = make_product(admin, name="Lamp")

        def boom(log):
            raise RuntimeError("audit storage down")

        monkeypatch.setattr(audit_service, "_persist", boom)

        result = catalog_service.update_product(product_id=product.id, patch={"name": "Lamp v2"})

        assert result["name"] == "Lamp v2"
        db_session.expire_all()
        assert catalog_service.get_product(product.id)["name"] == "Lamp v2"
        assert _logs(db_session, auditable_id=product.id, action="updated") == []

    def test_constraint_violation_in_audit_write_keeps_mutation(self, db_session, admin, make_product, monkeypatch):
        """The CHECK on audit_logs.action fails at flush; only the SAVEPOINT is rolled back."""
        product = make_product(admin, name="Lamp")
        real_persist = audit_service._persist

        def persist_bad_action(log):
            log.action = "renamed"
            real_persist(log)

        monkeypatch.setattr(audit_service, "_persist", persist_bad_action)

        result = catalog_service.update_product(product_id=product.id, patch={"name": "Lamp v2"})

        assert result["name"] == "Lamp v2"
        db_session.expire_all()
        assert catalog_service.get_product(product.id)["name"] == "Lamp v2"
        logs = _logs(db_session, auditable_type="Product", auditable_id=product.id)
        assert [log.action for log in logs] == ["created"]

    def test_record_rejects_unknown_action_without_raising(self, db_session, admin, make_product):
        product = make_product(admin)

        assert audit_service.record(
            "renamed", audit_service.ProductSubject(product.id), admin_id=admin.id, changeset={"x": 1}
        ) is None


class TestReadSide:
    def test_list_defaults_to_ten_per_page_newest_first(self, db_session, admin, make_category):
        for i in range(12):
            make_category(admin, name=f"Category {i:02d}")

        result = audit_service.list_audit_logs()

        assert len(result["audit_logs"]) == 10
        assert result["pagination"]["total"] == 12
        assert result["pagination"]["total_pages"] == 2
        ids = [row["id"] for row in result["audit_logs"]]
        assert ids == sorted(ids, reverse=True)

    def test_list_filters(self, db_session, admin, other_admin, make_category, make_product):
        make_category(admin, name="A")
        make_product(other_admin)

        by_type = audit_service.list_audit_logs(auditable_type="categories")
        by_admin = audit_service.list_audit_logs(admin_id=other_admin.id)

        assert [row["auditable"]["type"] for row in by_type["audit_logs"]] == ["Category"]
        assert [row["admin"]["id"] for row in by_admin["audit_logs"]] == [other_admin.id]

        with pytest.raises(ValidationError):
            audit_service.list_audit_logs(action="renamed")

    def test_recent_only_covers_last_hour(self, db_session, admin, make_category):
        category = make_category(admin, name="Fresh")
        stale = AuditLog(
            action="updated",
            admin_id=admin.id,
            auditable_type="Category",
            auditable_id=category.id,
            changes_data={"name": ["Stale", "Fresh"]},
            created_at=datetime(2020, 1, 1),
        )
        db_session.add(stale)
        db_session.commit()

        result = audit_service.recent_audit_logs()

        assert result["total_count"] == 1
        assert result["time_range"] == "Last hour"
        assert result["audit_logs"][0]["action"] == "created"

    def test_by_entity_labels(self, db_session, admin, make_category, make_product):
        category = make_category(admin, name="Garden")
        product = make_product(admin, name="Rake", categories=[category])
        link_id = db_session.query(ProductCategory.id).filter_by(product_id=product.id).scalar()

        product_logs = audit_service.audit_logs_for("products", product.id)
        link_logs = audit_service.audit_logs_for("ProductCategory", link_id)

        assert product_logs["entity_type"] == "Product"
        assert product_logs["audit_logs"][0]["auditable"]["name"] == "Rake"
        assert link_logs["audit_logs"][0]["auditable"]["name"] == "Product Rake - Category Garden"

    def test_by_entity_unknown_type(self, db_session):
        with pytest.raises(ValidationError):
            audit_service.audit_logs_for("customers", 1)

    def test_formatted_changes(self):
        log = AuditLog(changes_data={"name": ["Lamp", "Desk Lamp"], "stock": 4})
        assert log.formatted_changes() == 'name: ["Lamp", "Desk Lamp"], stock: 4'
