# Overview: Purchase workflow; validates, prices and records purchases and decrements stock.

"""
Purchase Workflow

create_purchase runs one unit of work:
1. validate quantity, customer and product; reject quantities above the
   stock seen at validation time
2. insert the Purchase with total_price = quantity * unit price
3. decrement stock with a conditional UPDATE (stock >= quantity), which is
   the only write path for Product.stock; zero matched rows means a
   concurrent purchase took the stock first -> InsufficientStockError and
   the whole unit rolls back
4. audit the stock change on the product and commit

After the commit, a purchase that is the first of its product enqueues a
first_purchase_notification job. That step never fails the purchase.

FIRST PURCHASE: no other purchase of the product has an earlier
purchased_at, or the same purchased_at and a smaller id.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import and_, or_, update

from ..extensions import db
from ..models import Customer, Product, Purchase
from ..validation import ConflictError, NotFoundError, ValidationError
from . import audit_service
from .audit_service import ProductSubject
from .concurrency import run_with_retry
from .pagination import paginate
from .reporting_service import apply_filters
from shopadmin.time_utils import utcnow


class InsufficientStockError(ConflictError):
    """The product no longer has enough stock for this purchase."""

    def __init__(self, current_stock: int):
        self.current_stock = current_stock
        super().__init__(f"Stock insuficiente. Stock actual: {current_stock}")


def _decrement_stock(product_id: int, quantity: int) -> None:
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity, version_id=Product.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = db.session.query(Product.stock).filter(Product.id == product_id).scalar()
        raise InsufficientStockError(current or 0)


def _record_purchase(
    *,
    customer_id: int,
    product_id: int,
    quantity: int,
    purchased_at: datetime | None,
    acting_admin_id: int | None,
) -> Purchase:
    product = db.session.get(Product, product_id, populate_existing=True)
    if not product:
        raise ValidationError(f"product {product_id} does not exist")
    if not db.session.get(Customer, customer_id):
        raise NotFoundError(f"Customer {customer_id} not found")

    if quantity > product.stock:
        raise ValidationError(
            f"insufficient stock: quantity {quantity} exceeds available stock ({product.stock})"
        )

    stock_before = product.stock
    purchase = Purchase(
        customer_id=customer_id,
        product_id=product.id,
        quantity=quantity,
        total_price=(Decimal(product.price) * quantity).quantize(Decimal("0.01")),
        purchased_at=purchased_at or utcnow(),
    )
    db.session.add(purchase)
    db.session.flush()

    _decrement_stock(product.id, quantity)
    db.session.refresh(product)

    audit_service.record(
        "updated",
        ProductSubject(product.id),
        admin_id=acting_admin_id if acting_admin_id is not None else product.admin_id,
        changeset={"stock": [stock_before, product.stock]},
    )

    db.session.commit()
    return purchase


def is_first_purchase_of_product(purchase: Purchase) -> bool:
    earlier = (
        db.session.query(Purchase.id)
        .filter(
            Purchase.product_id == purchase.product_id,
            Purchase.id != purchase.id,
            or_(
                Purchase.purchased_at < purchase.purchased_at,
                and_(Purchase.purchased_at == purchase.purchased_at, Purchase.id < purchase.id),
            ),
        )
        .first()
    )
    return earlier is None


def _notify_if_first_purchase(purchase: Purchase) -> bool:
    from ..jobs import jobs

    try:
        if not is_first_purchase_of_product(purchase):
            return False
        jobs.enqueue("first_purchase_notification", purchase.id)
        return True
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "First purchase detection failed for purchase %s", purchase.id
        )
        return False


def create_purchase(
    *,
    customer_id: int,
    product_id: int,
    quantity: int,
    purchased_at: datetime | None = None,
    acting_admin_id: int | None = None,
) -> Purchase:
    """
    Record a purchase and take its quantity out of stock.

    Raises ValidationError, NotFoundError or InsufficientStockError; on any of
    them nothing is persisted.
    """
    if quantity is None or isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    attempts = current_app.config.get("PURCHASE_RETRY_ATTEMPTS", 5)
    purchase = run_with_retry(
        lambda: _record_purchase(
            customer_id=customer_id,
            product_id=product_id,
            quantity=quantity,
            purchased_at=purchased_at,
            acting_admin_id=acting_admin_id,
        ),
        attempts=attempts,
    )

    current_app.logger.info(
        "Purchase %s recorded: product=%s quantity=%s total=%s",
        purchase.id, purchase.product_id, purchase.quantity, purchase.total_price,
    )
    _notify_if_first_purchase(purchase)
    return purchase


def list_purchases(
    *,
    filters: dict | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Filtered purchases, newest first."""
    query = apply_filters(db.session.query(Purchase), filters)
    query = query.order_by(Purchase.purchased_at.desc(), Purchase.id.desc())

    purchases, meta = paginate(query, page, per_page)
    return {
        "purchases": [p.to_dict() for p in purchases],
        "pagination": meta,
        "filters_applied": {k: v for k, v in (filters or {}).items() if v not in (None, "")},
    }
