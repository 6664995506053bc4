# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product management routes.

All routes require authentication. The acting admin (g.current_admin) owns
the products it creates and is recorded as the author of every audited
change.

Payload shape problems answer 400, field rule violations 422, missing
products or categories 404, conflicts 409.
"""
from decimal import Decimal, InvalidOperation

from flask import Blueprint, request, g

from ..services import catalog_service, reporting_service
from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_auth, json_payload

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "price", "stock"},
    required_on_create={"name", "description", "price", "images"},
    extra_fields={"images", "category_ids"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/v1/products")


def _decimal_arg(name: str) -> Decimal | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise ValidationError(f"{name} must be a number")


def _bool_arg(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in {"1", "true", "yes"}


@products_bp.get("")
@require_auth
def list_products_route():
    """
    List products.

    Query params:
    - page, per_page: pagination (default 20, max 100)
    - category_id: only products in that category
    - in_stock / out_of_stock: true to keep only products with / without stock
    - min_price, max_price: inclusive price range
    """
    in_stock = None
    if _bool_arg("in_stock"):
        in_stock = True
    elif _bool_arg("out_of_stock"):
        in_stock = False

    try:
        return catalog_service.list_products(
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
            category_id=request.args.get("category_id", type=int),
            in_stock=in_stock,
            min_price=_decimal_arg("min_price"),
            max_price=_decimal_arg("max_price"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 422


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return catalog_service.get_product(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404


@products_bp.post("")
@require_auth
def create_product_route():
    """
    Create a product owned by the caller.

    Body: name, description, price, stock (optional, default 0),
    images: [{image_url, caption?}] (at least one), category_ids (optional).
    """
    payload = json_payload()
    if payload is None:
        return {"error": "Invalid JSON payload"}, 400

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = catalog_service.create_product(patch=patch, acting_admin_id=g.current_admin.id)
    except ValidationError as e:
        return {"error": str(e)}, 422
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    return created, 201


@products_bp.route("/<int:product_id>", methods=["PUT", "PATCH"])
@require_auth
def update_product_route(product_id: int):
    payload = json_payload()
    if payload is None:
        return {"error": "Invalid JSON payload"}, 400

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = catalog_service.update_product(
            product_id=product_id, patch=patch, acting_admin_id=g.current_admin.id
        )
    except ValidationError as e:
        return {"error": str(e)}, 422
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    return updated, 200


@products_bp.delete("/<int:product_id>")
@require_auth
def delete_product_route(product_id: int):
    try:
        catalog_service.delete_product(product_id=product_id, acting_admin_id=g.current_admin.id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"ok": True}, 200


@products_bp.post("/<int:product_id>/categories/<int:category_id>")
@require_auth
def associate_category_route(product_id: int, category_id: int):
    try:
        return catalog_service.associate_category(product_id=product_id, category_id=category_id), 201
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409


@products_bp.delete("/<int:product_id>/categories/<int:category_id>")
@require_auth
def disassociate_category_route(product_id: int, category_id: int):
    try:
        return catalog_service.disassociate_category(product_id=product_id, category_id=category_id), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@products_bp.get("/most_purchased_by_category")
@require_auth
def most_purchased_by_category_route():
    """Per category, the most purchased products. Query param: limit (default 10)."""
    raw = request.args.get("limit")
    try:
        limit = int(raw) if raw else 10
    except ValueError:
        return {"error": "limit must be a positive integer"}, 400
    try:
        data = reporting_service.most_purchased_by_category(limit)
    except ValidationError as e:
        return {"error": str(e)}, 422
    return {"data": data, "message": "Most purchased products by category"}, 200


@products_bp.get("/top_revenue_by_category")
@require_auth
def top_revenue_by_category_route():
    """Top 3 categories by revenue with their top 3 products."""
    return {
        "data": reporting_service.top_revenue_by_category(),
        "message": "Top 3 revenue products by category",
    }, 200
