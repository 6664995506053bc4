# Overview: Flask API routes for categories operations; parses input and returns JSON responses.

from flask import Blueprint, request, g

from ..services import catalog_service
from ..models import Category
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_category,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_auth, json_payload

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description"},
    required_on_create={"name", "description"},
)

categories_bp = Blueprint("categories", __name__, url_prefix="/api/v1/categories")


@categories_bp.get("")
@require_auth
def list_categories_route():
    return catalog_service.list_categories(
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@categories_bp.get("/<int:category_id>")
@require_auth
def get_category_route(category_id: int):
    try:
        return catalog_service.get_category(category_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404


@categories_bp.post("")
@require_auth
def create_category_route():
    payload = json_payload()
    if payload is None:
        return {"error": "Invalid JSON payload"}, 400

    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
        enforce_rules_category(patch)
        created = catalog_service.create_category(patch=patch, acting_admin_id=g.current_admin.id)
    except ValidationError as e:
        return {"error": str(e)}, 422
    except ConflictError as e:
        return {"error": str(e)}, 409

    return created, 201


@categories_bp.route("/<int:category_id>", methods=["PUT", "PATCH"])
@require_auth
def update_category_route(category_id: int):
    payload = json_payload()
    if payload is None:
        return {"error": "Invalid JSON payload"}, 400

    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
        enforce_rules_category(patch)
        updated = catalog_service.update_category(
            category_id=category_id, patch=patch, acting_admin_id=g.current_admin.id
        )
    except ValidationError as e:
        return {"error": str(e)}, 422
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    return updated, 200


@categories_bp.delete("/<int:category_id>")
@require_auth
def delete_category_route(category_id: int):
    try:
        catalog_service.delete_category(category_id=category_id, acting_admin_id=g.current_admin.id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"ok": True}, 200
