# Overview: Flask API routes for background job scheduling; status and manual triggers.

from datetime import timedelta

from flask import Blueprint, request, current_app

from ..extensions import db
from ..models import Purchase
from ..jobs import jobs
from ..jobs.scheduler import enqueue_daily_report, scheduler_status
from ..decorators import require_auth, json_payload
from shopadmin.time_utils import parse_date, today

scheduler_bp = Blueprint("scheduler", __name__, url_prefix="/api/v1/scheduler")


def _param(name: str):
    body = json_payload() or {}
    value = body.get(name)
    if value is None:
        value = request.args.get(name)
    return value


@scheduler_bp.get("/status")
@require_auth
def status_route():
    return {"data": scheduler_status(), "message": "Scheduler status"}


@scheduler_bp.post("/trigger_daily_report")
@require_auth
def trigger_daily_report_route():
    """Queue the daily report now. Param: date (YYYY-MM-DD, default yesterday)."""
    raw = _param("date")
    try:
        day = parse_date(str(raw)) if raw else today() - timedelta(days=1)
    except ValueError:
        return {"error": "date must be YYYY-MM-DD"}, 400

    try:
        job = enqueue_daily_report(day)
    except Exception:
        current_app.logger.exception("Failed to enqueue daily report job")
        return {"error": "Failed to enqueue daily report job"}, 500

    return {
        "data": {"date": day.isoformat(), "job_id": job.id, "status": "queued"},
        "message": "Daily purchase report job enqueued",
    }, 202


@scheduler_bp.post("/trigger_first_purchase_test")
@require_auth
def trigger_first_purchase_test_route():
    """Queue a first-purchase notification for an existing purchase. Param: purchase_id."""
    raw = _param("purchase_id")
    if raw in (None, ""):
        return {"error": "purchase_id parameter is required"}, 400
    try:
        purchase_id = int(raw)
    except (TypeError, ValueError):
        return {"error": "purchase_id must be an integer"}, 400

    if not db.session.get(Purchase, purchase_id):
        return {"error": "Purchase not found"}, 404

    job = jobs.enqueue("first_purchase_notification", purchase_id)
    return {
        "data": {"purchase_id": purchase_id, "job_id": job.id, "status": "queued"},
        "message": "First purchase email job enqueued",
    }, 202
