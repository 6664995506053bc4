# Overview: Flask API routes for the audit trail; read-only.

from flask import Blueprint, request

from ..services import audit_service
from ..validation import ValidationError
from ..decorators import require_auth

audit_logs_bp = Blueprint("audit_logs", __name__, url_prefix="/api/v1/audit_logs")


@audit_logs_bp.get("")
@require_auth
def list_audit_logs_route():
    """
    Audit entries, newest first.

    Query params: page, per_page (default 10), action, auditable_type, admin_id.
    """
    try:
        return audit_service.list_audit_logs(
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
            action=request.args.get("action"),
            auditable_type=request.args.get("auditable_type"),
            admin_id=request.args.get("admin_id", type=int),
        )
    except ValidationError as e:
        return {"error": str(e)}, 422


@audit_logs_bp.get("/recent")
@require_auth
def recent_audit_logs_route():
    return audit_service.recent_audit_logs()


@audit_logs_bp.get("/by_entity/<entity_type>/<int:entity_id>")
@require_auth
def audit_logs_by_entity_route(entity_type: str, entity_id: int):
    try:
        return audit_service.audit_logs_for(entity_type, entity_id)
    except ValidationError as e:
        return {"error": str(e)}, 400
