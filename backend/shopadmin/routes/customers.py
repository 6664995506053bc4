# Overview: Flask API routes for customers operations; parses input and returns JSON responses.

from flask import Blueprint, request

from ..services import customer_service
from ..models import Customer
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_customer,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_auth, json_payload

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone", "address"},
    required_on_create={"name", "email"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/v1/customers")


@customers_bp.get("")
@require_auth
def list_customers_route():
    """Query params: page, per_page, search (name or email)."""
    return customer_service.list_customers(
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
        search=request.args.get("search"),
    )


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    try:
        return customer_service.get_customer(customer_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404


@customers_bp.post("")
@require_auth
def create_customer_route():
    payload = json_payload()
    if payload is None:
        return {"error": "Invalid JSON payload"}, 400

    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_customer(patch)
        created = customer_service.create_customer(patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 422
    except ConflictError as e:
        return {"error": str(e)}, 409

    return created, 201


@customers_bp.route("/<int:customer_id>", methods=["PUT", "PATCH"])
@require_auth
def update_customer_route(customer_id: int):
    payload = json_payload()
    if payload is None:
        return {"error": "Invalid JSON payload"}, 400

    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_customer(patch)
        updated = customer_service.update_customer(customer_id=customer_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 422
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    return updated, 200


@customers_bp.delete("/<int:customer_id>")
@require_auth
def delete_customer_route(customer_id: int):
    try:
        customer_service.delete_customer(customer_id=customer_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"ok": True}, 200
