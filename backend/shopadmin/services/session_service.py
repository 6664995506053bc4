# Overview: Service-layer operations for bearer sessions; issues, validates and revokes tokens.

"""
Admin Session Token Service

Tokens are cryptographically secure, hashed in the database, and
time-limited (SESSION_ABSOLUTE_TIMEOUT_HOURS, default 24h).

- 32 bytes of randomness, hex encoded, handed to the client once
- SHA-256 hash stored (tokens are high-entropy, bcrypt is unnecessary)
- Revocable on logout
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import Admin, AdminSession
from shopadmin.time_utils import utcnow


@dataclass
class SessionContext:
    """What a validated token resolves to: the acting admin and its session."""
    admin: Admin
    session: AdminSession


def generate_token() -> str:
    return secrets.token_hex(32)  # 32 bytes = 64 hex characters


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    admin_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[AdminSession, str]:
    """
    Create a session for an admin.

    Returns (session_record, plaintext_token).
    """
    admin = db.session.get(Admin, admin_id)
    if not admin:
        raise ValueError("Admin not found")

    plaintext_token = generate_token()
    now = utcnow()
    hours = current_app.config.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24)

    session = AdminSession(
        admin_id=admin.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + timedelta(hours=hours),
        user_agent=(user_agent or "")[:255] or None,
        ip_address=ip_address,
    )
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token.

    Returns None if the token is unknown, revoked, expired, or its admin no
    longer exists.
    """
    session = db.session.query(AdminSession).filter_by(
        token_hash=hash_token(token),
        revoked_at=None,
    ).first()

    if not session:
        return None

    if session.expires_at < utcnow():
        return None

    admin = session.admin
    if not admin:
        return None

    return SessionContext(admin=admin, session=session)


def revoke_session(token: str) -> bool:
    """Returns True if a live session was revoked."""
    session = db.session.query(AdminSession).filter_by(
        token_hash=hash_token(token),
        revoked_at=None,
    ).first()

    if not session:
        return False

    session.revoked_at = utcnow()
    db.session.commit()
    return True
