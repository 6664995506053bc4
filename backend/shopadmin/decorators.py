# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer token and bind the acting admin.

    Sets the following Flask g attributes:
    - g.current_admin: The authenticated Admin
    - g.session_context: The full SessionContext object

    Returns 401 if the Authorization header is missing or the token is
    unknown, revoked or expired.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_admin = context.admin
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def json_payload() -> dict | None:
    """The request body when it is a JSON object, else None."""
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else None
