# Overview: Read-only purchase aggregations for dashboards, the daily report and its email.

from __future__ import annotations

from collections import Counter
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import func

from shopadmin.extensions import db
from shopadmin.models import Admin, Category, Customer, Product, ProductCategory, Purchase
from shopadmin.time_utils import day_bounds, parse_range_boundary, week_start
from shopadmin.validation import ValidationError


GRANULARITIES = ("hour", "day", "week", "year")

FILTER_KEYS = ("start_date", "end_date", "category_id", "customer_id", "admin_id")


def _bucket_label(granularity: str, dt: datetime) -> str:
    if granularity == "hour":
        return dt.strftime("%Y-%m-%d %H:00")
    if granularity == "week":
        return week_start(dt).strftime("%Y-W%U")
    if granularity == "year":
        return dt.strftime("%Y")
    return dt.strftime("%Y-%m-%d")


def _parse_boundary(filters: dict, key: str, *, end: bool) -> datetime | None:
    try:
        return parse_range_boundary(filters.get(key), end=end)
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 date or datetime")


def _as_id(filters: dict, key: str) -> int | None:
    value = filters.get(key)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer")


def apply_filters(query, filters: dict | None):
    """
    Narrow a Purchase query.

    start_date / end_date accept full timestamps or YYYY-MM-DD (a date-only
    end_date covers the whole day). category_id, customer_id and admin_id
    (owner of the product) are exact matches. Missing keys apply no filter.
    """
    filters = filters or {}

    start = _parse_boundary(filters, "start_date", end=False)
    end = _parse_boundary(filters, "end_date", end=True)
    if start is not None:
        query = query.filter(Purchase.purchased_at >= start)
    if end is not None:
        query = query.filter(Purchase.purchased_at <= end)

    category_id = _as_id(filters, "category_id")
    if category_id is not None:
        query = query.join(
            ProductCategory, ProductCategory.product_id == Purchase.product_id
        ).filter(ProductCategory.category_id == category_id)

    customer_id = _as_id(filters, "customer_id")
    if customer_id is not None:
        query = query.filter(Purchase.customer_id == customer_id)

    admin_id = _as_id(filters, "admin_id")
    if admin_id is not None:
        owned = db.session.query(Product.id).filter(Product.admin_id == admin_id)
        query = query.filter(Purchase.product_id.in_(owned))

    return query


def count_by_granularity(granularity: str | None = "day", filters: dict | None = None) -> dict[str, int]:
    """
    Purchase counts per time bucket, ordered by bucket label.

    Buckets: hour "YYYY-MM-DD HH:00", day "YYYY-MM-DD", week "YYYY-Www"
    (weeks open on Sunday), year "YYYY". Empty buckets are not emitted.
    """
    granularity = granularity or "day"
    if granularity not in GRANULARITIES:
        raise ValidationError("Invalid granularity. Must be: hour, day, week, year")

    query = apply_filters(db.session.query(Purchase.id, Purchase.purchased_at), filters)
    counts = Counter(_bucket_label(granularity, row.purchased_at) for row in query.all())
    return dict(sorted(counts.items()))


def daily_report(day: date) -> dict:
    """Totals plus per-product and per-category breakdowns for one UTC day."""
    start, end = day_bounds(day)
    in_day = (Purchase.purchased_at >= start, Purchase.purchased_at <= end)

    count, revenue = db.session.query(
        func.count(Purchase.id),
        func.coalesce(func.sum(Purchase.total_price), 0),
    ).filter(*in_day).one()

    products = (
        db.session.query(
            Product.id,
            Product.name,
            func.sum(Purchase.quantity).label("quantity_sold"),
        )
        .join(Purchase, Purchase.product_id == Product.id)
        .filter(*in_day)
        .group_by(Product.id, Product.name)
        .order_by(func.sum(Purchase.quantity).desc(), Product.id.asc())
        .all()
    )

    categories = (
        db.session.query(
            Category.id,
            Category.name,
            func.count(Purchase.id).label("purchase_count"),
            func.sum(Purchase.total_price).label("revenue"),
        )
        .join(ProductCategory, ProductCategory.category_id == Category.id)
        .join(Purchase, Purchase.product_id == ProductCategory.product_id)
        .filter(*in_day)
        .group_by(Category.id, Category.name)
        .order_by(Category.name.asc())
        .all()
    )

    return {
        "date": day.isoformat(),
        "total_purchases": int(count or 0),
        "total_revenue": float(revenue or 0),
        "products_sold": [
            {"product_id": r.id, "product_name": r.name, "quantity_sold": int(r.quantity_sold)}
            for r in products
        ],
        "categories_performance": [
            {
                "category_id": r.id,
                "category_name": r.name,
                "purchase_count": int(r.purchase_count),
                "revenue": float(r.revenue or 0),
            }
            for r in categories
        ],
    }


def most_purchased_by_category(limit: int = 10) -> list[dict]:
    """
    For every category with purchases, its `limit` most purchased products
    by purchase count (ties by product id ascending). Categories by name.
    """
    if limit is None or limit < 1:
        raise ValidationError("limit must be a positive integer")

    purchase_count = func.count(Purchase.id)
    rows = (
        db.session.query(
            Category.id.label("category_id"),
            Category.name.label("category_name"),
            Product.id.label("product_id"),
            Product.name.label("product_name"),
            purchase_count.label("purchase_count"),
        )
        .join(ProductCategory, ProductCategory.category_id == Category.id)
        .join(Product, Product.id == ProductCategory.product_id)
        .join(Purchase, Purchase.product_id == Product.id)
        .group_by(Category.id, Category.name, Product.id, Product.name)
        .order_by(Category.name.asc(), Category.id.asc(), purchase_count.desc(), Product.id.asc())
        .all()
    )

    grouped: dict[int, dict] = {}
    for r in rows:
        entry = grouped.setdefault(r.category_id, {
            "category": {"id": r.category_id, "name": r.category_name},
            "products": [],
        })
        if len(entry["products"]) < limit:
            entry["products"].append({
                "id": r.product_id,
                "name": r.product_name,
                "purchase_count": int(r.purchase_count),
            })
    return list(grouped.values())


def top_revenue_by_category(categories: int = 3, products: int = 3) -> list[dict]:
    """Top categories by revenue, each with its top products by revenue (ties by id)."""
    category_revenue = func.sum(Purchase.total_price)
    top_categories = (
        db.session.query(Category.id, Category.name, category_revenue.label("revenue"))
        .join(ProductCategory, ProductCategory.category_id == Category.id)
        .join(Purchase, Purchase.product_id == ProductCategory.product_id)
        .group_by(Category.id, Category.name)
        .order_by(category_revenue.desc(), Category.id.asc())
        .limit(categories)
        .all()
    )

    result = []
    for cat in top_categories:
        product_revenue = func.sum(Purchase.total_price)
        top_products = (
            db.session.query(Product.id, Product.name, product_revenue.label("revenue"))
            .join(ProductCategory, ProductCategory.product_id == Product.id)
            .join(Purchase, Purchase.product_id == Product.id)
            .filter(ProductCategory.category_id == cat.id)
            .group_by(Product.id, Product.name)
            .order_by(product_revenue.desc(), Product.id.asc())
            .limit(products)
            .all()
        )
        result.append({
            "category": {"id": cat.id, "name": cat.name},
            "total_revenue": float(cat.revenue or 0),
            "top_products": [
                {"id": p.id, "name": p.name, "total_revenue": float(p.revenue or 0)}
                for p in top_products
            ],
        })
    return result


# ---------------------------------------------------------------------------
# Daily report email payload
# ---------------------------------------------------------------------------

def _money(value) -> float:
    return float(value or Decimal("0"))


def build_daily_email_report(day: date) -> dict | None:
    """
    Everything the daily report email shows for `day`.

    Returns None when the day had no purchases.
    """
    start, end = day_bounds(day)
    in_day = (Purchase.purchased_at >= start, Purchase.purchased_at <= end)

    total, revenue, customers, products = db.session.query(
        func.count(Purchase.id),
        func.coalesce(func.sum(Purchase.total_price), 0),
        func.count(func.distinct(Purchase.customer_id)),
        func.count(func.distinct(Purchase.product_id)),
    ).filter(*in_day).one()

    if not total:
        return None

    revenue_expr = func.sum(Purchase.total_price)
    quantity_expr = func.sum(Purchase.quantity)
    count_expr = func.count(Purchase.id)

    product_rows = (
        db.session.query(Product.id, Product.name, Product.price,
                         quantity_expr.label("quantity"), revenue_expr.label("revenue"), count_expr.label("purchases"))
        .join(Purchase, Purchase.product_id == Product.id)
        .filter(*in_day)
        .group_by(Product.id, Product.name, Product.price)
        .order_by(revenue_expr.desc(), Product.id.asc())
        .limit(20)
        .all()
    )

    category_rows = (
        db.session.query(Category.id, Category.name,
                         quantity_expr.label("quantity"), revenue_expr.label("revenue"), count_expr.label("purchases"))
        .join(ProductCategory, ProductCategory.category_id == Category.id)
        .join(Purchase, Purchase.product_id == ProductCategory.product_id)
        .filter(*in_day)
        .group_by(Category.id, Category.name)
        .order_by(revenue_expr.desc(), Category.id.asc())
        .all()
    )

    admin_rows = (
        db.session.query(Admin.id, Admin.name,
                         quantity_expr.label("quantity"), revenue_expr.label("revenue"), count_expr.label("purchases"))
        .join(Product, Product.admin_id == Admin.id)
        .join(Purchase, Purchase.product_id == Product.id)
        .filter(*in_day)
        .group_by(Admin.id, Admin.name)
        .order_by(revenue_expr.desc(), Admin.id.asc())
        .all()
    )

    customer_rows = (
        db.session.query(Customer.id, Customer.name, Customer.email,
                         quantity_expr.label("quantity"), revenue_expr.label("revenue"), count_expr.label("purchases"))
        .join(Purchase, Purchase.customer_id == Customer.id)
        .filter(*in_day)
        .group_by(Customer.id, Customer.name, Customer.email)
        .order_by(revenue_expr.desc(), Customer.id.asc())
        .limit(10)
        .all()
    )

    return {
        "date": day.isoformat(),
        "summary": {
            "total_purchases": int(total),
            "total_revenue": _money(revenue),
            "unique_customers": int(customers),
            "unique_products": int(products),
        },
        "products_sold": [
            {
                "product_id": r.id,
                "product_name": r.name,
                "unit_price": _money(r.price),
                "quantity_sold": int(r.quantity),
                "total_revenue": _money(r.revenue),
                "purchase_count": int(r.purchases),
            }
            for r in product_rows
        ],
        "categories_performance": [
            {
                "category_id": r.id,
                "category_name": r.name,
                "quantity_sold": int(r.quantity),
                "total_revenue": _money(r.revenue),
                "purchase_count": int(r.purchases),
            }
            for r in category_rows
        ],
        "administrators_performance": [
            {
                "administrator_id": r.id,
                "administrator_name": r.name,
                "quantity_sold": int(r.quantity),
                "total_revenue": _money(r.revenue),
                "purchase_count": int(r.purchases),
            }
            for r in admin_rows
        ],
        "top_customers": [
            {
                "customer_id": r.id,
                "customer_name": r.name,
                "customer_email": r.email,
                "quantity_purchased": int(r.quantity),
                "total_spent": _money(r.revenue),
                "purchase_count": int(r.purchases),
            }
            for r in customer_rows
        ],
    }
