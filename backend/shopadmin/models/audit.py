from __future__ import annotations

from ..extensions import db
from shopadmin.time_utils import to_utc_z, utcnow


AUDIT_ACTIONS = ("created", "updated", "deleted", "category_associated", "category_disassociated")


class AuditLog(db.Model):
    """
    Append-only record of a mutation on an auditable entity.

    The subject is a (auditable_type, auditable_id) pair with no foreign
    key, so the "deleted" entry of a subject outlives the subject row.
    Rows are never updated; they only disappear when their subject or their
    admin is deleted.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_auditable", "auditable_type", "auditable_id"),
        db.CheckConstraint(
            "action IN ('created', 'updated', 'deleted', 'category_associated', 'category_disassociated')",
            name="ck_audit_logs_action",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(32), nullable=False, index=True)
    admin_id = db.Column(db.Integer, db.ForeignKey("admins.id"), nullable=False, index=True)

    auditable_type = db.Column(db.String(32), nullable=False)
    auditable_id = db.Column(db.Integer, nullable=False)

    changes_data = db.Column(db.JSON, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    admin = db.relationship("Admin")

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} {self.action} {self.auditable_type}#{self.auditable_id}>"

    def formatted_changes(self) -> str:
        changes = self.changes_data or {}
        parts = []
        for key, value in changes.items():
            if isinstance(value, list) and len(value) == 2:
                parts.append(f'{key}: ["{value[0]}", "{value[1]}"]')
            else:
                parts.append(f"{key}: {value}")
        return ", ".join(parts)

    def to_dict(self, subject_name: str | None = None) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "admin": self.admin.to_ref() if self.admin else None,
            "auditable": {
                "type": self.auditable_type,
                "id": self.auditable_id,
                "name": subject_name,
            },
            "changes_data": self.changes_data,
            "formatted_changes": self.formatted_changes(),
            "created_at": to_utc_z(self.created_at),
        }
