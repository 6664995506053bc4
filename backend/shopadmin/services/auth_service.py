# Overview: Service-layer operations for admins; passwords, login and admin lifecycle.

"""
Admin Authentication Service

Every mutation in the system is attributed to an admin, so admins are the
only principals. Passwords are hashed with bcrypt (cost factor 12) and must
be at least 6 characters long. Session tokens are handled separately (see
session_service.py).

Deleting an admin removes everything it owns: products (with their images,
links and purchases), categories, audit rows it authored and its sessions.
"""

import bcrypt

from ..extensions import db
from ..models import Admin, AdminSession
from ..validation import ConflictError, NotFoundError, ValidationError, enforce_rules_admin
from .catalog_service import purge_admin_catalog


MIN_PASSWORD_LENGTH = 6


class PasswordValidationError(ValidationError):
    """Raised when a password doesn't meet the length requirement."""


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe check of a password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # malformed stored hash
        return False


def authenticate(email: str, password: str) -> Admin | None:
    """Returns the admin for valid credentials, otherwise None."""
    if not email or not password:
        return None
    admin = db.session.query(Admin).filter_by(email=email.strip().lower()).first()
    if not admin or not verify_password(password, admin.password_hash):
        return None
    return admin


def create_admin(email: str, name: str, password: str) -> Admin:
    """
    Create an admin.

    Raises ValidationError for a bad email, name or password and
    ConflictError when the email is already taken.
    """
    patch = {"email": email or "", "name": (name or "").strip()}
    enforce_rules_admin(patch)
    if not patch["name"]:
        raise ValidationError("name is required")

    if db.session.query(Admin).filter_by(email=patch["email"]).first():
        raise ConflictError("Email already exists.")

    admin = Admin(
        email=patch["email"],
        name=patch["name"],
        password_hash=hash_password(password),
    )
    db.session.add(admin)
    db.session.commit()
    return admin


def list_admins() -> list[Admin]:
    return db.session.query(Admin).order_by(Admin.id.asc()).all()


def delete_admin(admin_id: int) -> None:
    """Delete an admin and cascade its catalog, authored audit rows and sessions."""
    admin = db.session.get(Admin, admin_id)
    if not admin:
        raise NotFoundError(f"Admin {admin_id} not found")

    purge_admin_catalog(admin.id)
    db.session.query(AdminSession).filter_by(admin_id=admin.id).delete(synchronize_session=False)
    db.session.expire(admin)
    db.session.delete(admin)
    db.session.commit()
