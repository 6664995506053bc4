# Overview: Service-layer operations for customers; CRUD plus purchase aggregates.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Category, Customer, ProductCategory, Purchase
from ..validation import ConflictError, NotFoundError
from .pagination import paginate
from shopadmin.time_utils import to_utc_z


CUSTOMER_MUTABLE_FIELDS = {"name", "email", "phone", "address"}


def _get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def _ensure_email_free(email: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Customer).filter(Customer.email == email)
    if exclude_id is not None:
        query = query.filter(Customer.id != exclude_id)
    if query.first():
        raise ConflictError("Email already exists.")


def _aggregates(customer_id: int) -> dict:
    count, spent, first, last = db.session.query(
        func.count(Purchase.id),
        func.coalesce(func.sum(Purchase.total_price), 0),
        func.min(Purchase.purchased_at),
        func.max(Purchase.purchased_at),
    ).filter(Purchase.customer_id == customer_id).one()
    return {
        "total_purchases": int(count or 0),
        "total_spent": float(spent or 0),
        "first_purchase": first,
        "last_purchase": last,
    }


def _favorite_categories(customer_id: int, limit: int = 5) -> list[dict]:
    rows = (
        db.session.query(Category.id, Category.name, func.count(Purchase.id).label("purchase_count"))
        .join(ProductCategory, ProductCategory.category_id == Category.id)
        .join(Purchase, Purchase.product_id == ProductCategory.product_id)
        .filter(Purchase.customer_id == customer_id)
        .group_by(Category.id, Category.name)
        .order_by(func.count(Purchase.id).desc(), Category.id.asc())
        .limit(limit)
        .all()
    )
    return [{"id": r.id, "name": r.name, "purchase_count": int(r.purchase_count)} for r in rows]


def list_customers(
    *,
    page: int | None = None,
    per_page: int | None = None,
    search: str | None = None,
) -> dict:
    """Customers ordered by name; `search` matches name or email (case-insensitive)."""
    query = db.session.query(Customer)
    if search:
        like = f"%{search.strip().lower()}%"
        query = query.filter(
            db.or_(func.lower(Customer.name).like(like), func.lower(Customer.email).like(like))
        )
    query = query.order_by(Customer.name.asc(), Customer.id.asc())

    customers, meta = paginate(query, page, per_page)
    return {
        "customers": [c.to_dict() for c in customers],
        "pagination": meta,
    }


def get_customer(customer_id: int) -> dict:
    customer = _get_customer(customer_id)
    stats = _aggregates(customer.id)

    data = customer.to_dict()
    data.update({
        "total_purchases": stats["total_purchases"],
        "total_spent": stats["total_spent"],
        "first_purchase": to_utc_z(stats["first_purchase"]),
        "last_purchase": to_utc_z(stats["last_purchase"]),
        "favorite_categories": _favorite_categories(customer.id),
    })
    return data


def create_customer(*, patch: dict) -> dict:
    _ensure_email_free(patch["email"])

    customer = Customer()
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, k, v)

    db.session.add(customer)
    db.session.commit()
    return customer.to_dict()


def update_customer(*, customer_id: int, patch: dict) -> dict:
    customer = _get_customer(customer_id)
    if "email" in patch and patch["email"] != customer.email:
        _ensure_email_free(patch["email"], exclude_id=customer.id)

    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, k, v)

    db.session.commit()
    return customer.to_dict()


def delete_customer(*, customer_id: int) -> None:
    """Deletes the customer together with their purchases."""
    customer = _get_customer(customer_id)
    db.session.query(Purchase).filter_by(customer_id=customer.id).delete(synchronize_session=False)
    db.session.delete(customer)
    db.session.commit()
