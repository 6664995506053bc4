# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- POST /login  -> bearer token (opaque, 24h, stored hashed)
- POST /logout -> revokes the presented token
- GET  /me     -> the acting admin
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth, bearer_token, json_payload
from shopadmin.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1")


@auth_bp.post("/login")
def login_route():
    """Authenticate an admin with email + password and issue a session token."""
    data = json_payload()
    if data is None:
        return jsonify({"error": "Invalid JSON payload"}), 400

    email = data.get("email")
    password = data.get("password")
    if not all([email, password]):
        return jsonify({"error": "email and password required"}), 400

    try:
        admin = auth_service.authenticate(email, password)
        if not admin:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            admin_id=admin.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
    except Exception:
        current_app.logger.exception("Failed to login admin")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info("Admin %s logged in", admin.id)
    return jsonify({
        "admin": admin.to_dict(),
        "token": token,
        "expires_at": to_utc_z(session.expires_at),
        "message": "Login successful",
    }), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(bearer_token())
    return jsonify({"message": "Logout successful"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"admin": g.current_admin.to_dict()}), 200
