# backend/shopadmin/services/catalog_service.py
"""
Catalog Service: products, categories, images and product-category links.

Every mutation is flushed first and then handed to audit_service in the
same transaction:
- product/category create, update, delete -> created / updated / deleted
- link create/destroy -> category_associated / category_disassociated
An update that changes nothing writes no audit row.

Deletes cascade explicitly and in order (links, images, purchases, the
subject's prior audit rows, then the row itself); only the top-level
deletion is audited.

IMAGES: a product always keeps at least one image.
"""
from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import AuditLog, Category, Product, ProductCategory, ProductImage, Purchase
from ..time_utils import to_utc_z
from ..validation import ConflictError, NotFoundError, ValidationError
from . import audit_service
from .audit_service import CategorySubject, ProductCategorySubject, ProductSubject
from .concurrency import run_with_retry
from .pagination import paginate

PRODUCT_MUTABLE_FIELDS = {"name", "description", "price", "stock"}
CATEGORY_MUTABLE_FIELDS = {"name", "description"}


def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def _get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if not category:
        raise NotFoundError(f"Category {category_id} not found")
    return category


def _load_categories(category_ids: list[int]) -> list[Category]:
    ids = list(dict.fromkeys(category_ids))
    if not ids:
        return []
    categories = db.session.query(Category).filter(Category.id.in_(ids)).all()
    found = {c.id for c in categories}
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFoundError(f"Category not found: {', '.join(str(i) for i in missing)}")
    by_id = {c.id: c for c in categories}
    return [by_id[i] for i in ids]


def default_caption(product: Product) -> str:
    return f"Image of {product.name}"


def _replace_images(product: Product, images: list[dict]) -> None:
    if not images:
        raise ValidationError("Product must have at least one image")

    for img in list(product.images):
        db.session.delete(img)
    db.session.flush()
    db.session.expire(product, ["images"])

    for img in images:
        db.session.add(ProductImage(
            product_id=product.id,
            image_url=img["image_url"],
            caption=img.get("caption") or default_caption(product),
        ))
    db.session.flush()
    db.session.expire(product, ["images"])


def _link(product: Product, category: Category) -> ProductCategory:
    existing = db.session.query(ProductCategory).filter_by(
        product_id=product.id, category_id=category.id
    ).first()
    if existing:
        raise ConflictError(f"Product {product.id} is already in category {category.id}")

    link = ProductCategory(product=product, category=category)
    db.session.add(link)
    db.session.flush()
    audit_service.record_link_event(link, "category_associated")
    return link


def _unlink(link: ProductCategory) -> None:
    # load both ends while the row still exists
    link.product, link.category
    db.session.delete(link)
    db.session.flush()
    audit_service.record_link_event(link, "category_disassociated")


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

def list_products(
    *,
    page: int | None = None,
    per_page: int | None = None,
    category_id: int | None = None,
    in_stock: bool | None = None,
    min_price: Decimal | None = None,
    max_price: Decimal | None = None,
) -> dict:
    query = db.session.query(Product)
    if category_id is not None:
        query = query.join(ProductCategory, ProductCategory.product_id == Product.id).filter(
            ProductCategory.category_id == category_id
        )
    if in_stock is True:
        query = query.filter(Product.stock > 0)
    elif in_stock is False:
        query = query.filter(Product.stock == 0)
    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)

    query = query.order_by(Product.id.asc())
    products, meta = paginate(query, page, per_page)
    return {
        "products": [p.to_dict() for p in products],
        "pagination": meta,
    }


def get_product(product_id: int) -> dict:
    """Product with its purchase totals."""
    product = _get_product(product_id)

    totals = db.session.query(
        func.count(Purchase.id),
        func.coalesce(func.sum(Purchase.total_price), 0),
        func.coalesce(func.sum(Purchase.quantity), 0),
        func.min(Purchase.purchased_at),
        func.max(Purchase.purchased_at),
    ).filter(Purchase.product_id == product.id).one()

    data = product.to_dict()
    data.update({
        "total_purchases": int(totals[0] or 0),
        "total_revenue": float(totals[1] or 0),
        "total_sold": int(totals[2] or 0),
        "first_purchase": to_utc_z(totals[3]),
        "last_purchase": to_utc_z(totals[4]),
    })
    return data


def create_product(*, patch: dict, acting_admin_id: int) -> dict:
    """
    Create a product owned by the acting admin.

    patch: validated fields plus `images` (required, >= 1) and optional
    `category_ids`.
    """
    images = patch.get("images") or []
    if not images:
        raise ValidationError("Product must have at least one image")
    categories = _load_categories(patch.get("category_ids") or [])

    product = Product(admin_id=acting_admin_id)
    for k, v in patch.items():
        if k in PRODUCT_MUTABLE_FIELDS:
            setattr(product, k, v)
    if product.stock is None:
        product.stock = 0

    db.session.add(product)
    db.session.flush()  # ensure product.id exists before images/audit

    _replace_images(product, images)
    audit_service.record_created(product, acting_admin_id=acting_admin_id)

    for category in categories:
        _link(product, category)
    db.session.expire(product, ["categories"])

    db.session.commit()
    return product.to_dict()


def update_product(*, product_id: int, patch: dict, acting_admin_id: int | None = None) -> dict:
    """
    Apply a validated patch. `images`, when present, replaces the image set;
    `category_ids`, when present, becomes the new category set (diffed into
    link creates/destroys).
    """
    def _op():
        product = _get_product(product_id)
        before = audit_service.snapshot(product)

        for k, v in patch.items():
            if k in PRODUCT_MUTABLE_FIELDS:
                setattr(product, k, v)
        db.session.flush()

        if "images" in patch:
            _replace_images(product, patch["images"] or [])

        audit_service.record_updated(product, before, acting_admin_id=acting_admin_id)

        if "category_ids" in patch:
            wanted = _load_categories(patch["category_ids"] or [])
            wanted_ids = {c.id for c in wanted}
            links = db.session.query(ProductCategory).filter_by(product_id=product.id).all()
            current_ids = {link.category_id for link in links}

            for link in links:
                if link.category_id not in wanted_ids:
                    _unlink(link)
            for category in wanted:
                if category.id not in current_ids:
                    _link(product, category)
            db.session.expire(product, ["categories"])

        db.session.commit()
        return product.to_dict()

    return run_with_retry(_op)


def _purge_links(links_query) -> None:
    for link_id, in links_query.with_entities(ProductCategory.id).all():
        audit_service.delete_subject_logs(ProductCategorySubject(link_id))
    links_query.delete(synchronize_session=False)


def _purge_product_rows(product: Product) -> None:
    """Ordered cascade of everything hanging off a product, without audit."""
    _purge_links(db.session.query(ProductCategory).filter_by(product_id=product.id))
    db.session.query(ProductImage).filter_by(product_id=product.id).delete(synchronize_session=False)
    db.session.query(Purchase).filter_by(product_id=product.id).delete(synchronize_session=False)
    audit_service.delete_subject_logs(ProductSubject(product.id))
    db.session.expire(product)
    db.session.delete(product)
    db.session.flush()


def delete_product(*, product_id: int, acting_admin_id: int | None = None) -> None:
    def _op():
        product = _get_product(product_id)
        final_state = audit_service.snapshot(product)
        subject = ProductSubject(product.id)
        owner_admin_id = product.admin_id

        _purge_product_rows(product)

        audit_service.record_deleted(
            subject, final_state, owner_admin_id=owner_admin_id, acting_admin_id=acting_admin_id
        )
        db.session.commit()

    run_with_retry(_op)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def _ensure_category_name_free(name: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Category).filter(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    if query.first():
        raise ConflictError("Category name already exists.")


def _flush_category() -> None:
    """Flush, turning a violation of the lower(name) index into ConflictError."""
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Category name already exists.")


def list_categories(*, page: int | None = None, per_page: int | None = None) -> dict:
    query = db.session.query(Category).order_by(Category.name.asc(), Category.id.asc())
    categories, meta = paginate(query, page, per_page)
    return {
        "categories": [c.to_dict() for c in categories],
        "pagination": meta,
    }


def get_category(category_id: int) -> dict:
    category = _get_category(category_id)

    totals = db.session.query(
        func.count(Purchase.id),
        func.coalesce(func.sum(Purchase.total_price), 0),
    ).join(
        ProductCategory, ProductCategory.product_id == Purchase.product_id
    ).filter(ProductCategory.category_id == category.id).one()

    data = category.to_dict()
    data.update({
        "products": [{"id": p.id, "name": p.name, "price": float(p.price)} for p in category.products],
        "total_purchases": int(totals[0] or 0),
        "total_revenue": float(totals[1] or 0),
    })
    return data


def create_category(*, patch: dict, acting_admin_id: int) -> dict:
    _ensure_category_name_free(patch["name"])

    category = Category(admin_id=acting_admin_id)
    for k, v in patch.items():
        if k in CATEGORY_MUTABLE_FIELDS:
            setattr(category, k, v)

    db.session.add(category)
    _flush_category()

    audit_service.record_created(category, acting_admin_id=acting_admin_id)
    db.session.commit()
    return category.to_dict()


def update_category(*, category_id: int, patch: dict, acting_admin_id: int | None = None) -> dict:
    category = _get_category(category_id)
    if "name" in patch and patch["name"].lower() != category.name.lower():
        _ensure_category_name_free(patch["name"], exclude_id=category.id)

    before = audit_service.snapshot(category)
    for k, v in patch.items():
        if k in CATEGORY_MUTABLE_FIELDS:
            setattr(category, k, v)
    _flush_category()

    audit_service.record_updated(category, before, acting_admin_id=acting_admin_id)
    db.session.commit()
    return category.to_dict()


def _purge_category_rows(category: Category) -> None:
    _purge_links(db.session.query(ProductCategory).filter_by(category_id=category.id))
    audit_service.delete_subject_logs(CategorySubject(category.id))
    db.session.expire(category)
    db.session.delete(category)
    db.session.flush()


def delete_category(*, category_id: int, acting_admin_id: int | None = None) -> None:
    category = _get_category(category_id)
    final_state = audit_service.snapshot(category)
    subject = CategorySubject(category.id)
    owner_admin_id = category.admin_id

    _purge_category_rows(category)

    audit_service.record_deleted(
        subject, final_state, owner_admin_id=owner_admin_id, acting_admin_id=acting_admin_id
    )
    db.session.commit()


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------

def associate_category(*, product_id: int, category_id: int) -> dict:
    product = _get_product(product_id)
    category = _get_category(category_id)
    _link(product, category)
    db.session.expire(product, ["categories"])
    db.session.commit()
    return product.to_dict()


def disassociate_category(*, product_id: int, category_id: int) -> dict:
    product = _get_product(product_id)
    link = db.session.query(ProductCategory).filter_by(
        product_id=product_id, category_id=category_id
    ).first()
    if not link:
        raise NotFoundError(f"Product {product_id} is not in category {category_id}")
    _unlink(link)
    db.session.expire(product, ["categories"])
    db.session.commit()
    return product.to_dict()


def purge_admin_catalog(admin_id: int) -> None:
    """Cascade used by admin deletion: owned products, then owned categories. Not audited."""
    for product in db.session.query(Product).filter_by(admin_id=admin_id).all():
        _purge_product_rows(product)
    for category in db.session.query(Category).filter_by(admin_id=admin_id).all():
        _purge_category_rows(category)
    db.session.query(AuditLog).filter_by(admin_id=admin_id).delete(synchronize_session=False)
