# Overview: Flask API routes for purchases and purchase reports; parses input and returns JSON responses.

"""
Purchase routes.

POST /purchases runs the purchase workflow (stock check, pricing, stock
decrement, first-purchase notification). A purchase that lost the race for
the last units answers 409 with the stock left.

The report routes share one filter vocabulary: start_date, end_date
(timestamps or YYYY-MM-DD), category_id, customer_id, admin_id.
"""
from datetime import timedelta

from flask import Blueprint, request, g, current_app

from ..services import purchase_service, reporting_service
from ..services.purchase_service import InsufficientStockError
from ..models import Purchase
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_purchase,
    ValidationError,
    NotFoundError,
)
from ..decorators import require_auth, json_payload
from shopadmin.time_utils import parse_date, today

PURCHASE_POLICY = ModelValidationPolicy(
    writable_fields={"customer_id", "product_id", "quantity", "purchased_at"},
    required_on_create={"customer_id", "product_id", "quantity"},
)

purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/v1/purchases")


def _report_filters() -> dict:
    args = request.args
    filters = {
        "start_date": args.get("start_date"),
        "end_date": args.get("end_date"),
        "category_id": args.get("category_id"),
        "customer_id": args.get("customer_id") or args.get("client_id"),
        "admin_id": args.get("admin_id") or args.get("administrator_id"),
    }
    return {k: v for k, v in filters.items() if v not in (None, "")}


@purchases_bp.post("")
@require_auth
def create_purchase_route():
    """
    Record a purchase.

    Body: customer_id, product_id, quantity, purchased_at (optional), either
    at the top level or wrapped in {"purchase": {...}}.
    """
    payload = json_payload()
    if payload is None:
        return {"error": "Invalid JSON payload"}, 400
    if isinstance(payload.get("purchase"), dict):
        payload = payload["purchase"]

    try:
        patch = validate_payload(model=Purchase, payload=payload, policy=PURCHASE_POLICY, partial=False)
        enforce_rules_purchase(patch)
        purchase = purchase_service.create_purchase(
            customer_id=patch["customer_id"],
            product_id=patch["product_id"],
            quantity=patch["quantity"],
            purchased_at=patch.get("purchased_at"),
            acting_admin_id=g.current_admin.id,
        )
    except InsufficientStockError as e:
        return {"error": str(e), "current_stock": e.current_stock}, 409
    except ValidationError as e:
        return {"error": str(e)}, 422
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"purchase": purchase.to_dict(), "message": "Purchase created successfully"}, 201


@purchases_bp.get("/filtered")
@require_auth
def filtered_purchases_route():
    try:
        return purchase_service.list_purchases(
            filters=_report_filters(),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
    except ValidationError as e:
        return {"error": str(e)}, 422


@purchases_bp.get("/count_by_granularity")
@require_auth
def count_by_granularity_route():
    """Purchase counts per hour/day/week/year bucket. Query param: granularity (default day)."""
    granularity = request.args.get("granularity") or "day"
    if granularity not in reporting_service.GRANULARITIES:
        return {"error": "Invalid granularity. Must be: hour, day, week, year"}, 400

    filters = _report_filters()
    try:
        grouped = reporting_service.count_by_granularity(granularity, filters)
    except ValidationError as e:
        return {"error": str(e)}, 422

    return {
        "grouped_data": grouped,
        "total_purchases": sum(grouped.values()),
        "granularity": granularity,
        "filters_applied": filters,
    }


@purchases_bp.get("/daily_report")
@require_auth
def daily_report_route():
    """Report of one day. Query param: date (YYYY-MM-DD, default yesterday)."""
    raw = request.args.get("date")
    try:
        day = parse_date(raw) if raw else today() - timedelta(days=1)
    except ValueError:
        return {"error": "date must be YYYY-MM-DD"}, 400

    try:
        return reporting_service.daily_report(day)
    except Exception:
        current_app.logger.exception("Failed to build daily report for %s", day)
        return {"error": "Internal server error"}, 500
