from __future__ import annotations

from ..extensions import db
from shopadmin.time_utils import to_utc_z


class Admin(db.Model):
    """
    Back-office administrator.

    Admins own the products and categories they create and author audit
    log entries. Email is stored normalized (stripped, lower-case) and is
    unique.
    """
    __tablename__ = "admins"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_admins_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Admin id={self.id} email={self.email!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    def to_ref(self) -> dict:
        return {"id": self.id, "name": self.name}


class AdminSession(db.Model):
    """
    Bearer token issued at login.

    Only the SHA-256 hash of the token is stored; the plaintext is handed to
    the client once.
    """
    __tablename__ = "admin_sessions"
    __table_args__ = (
        db.UniqueConstraint("token_hash", name="uq_admin_sessions_token_hash"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(db.Integer, db.ForeignKey("admins.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    admin = db.relationship("Admin")
