# Overview: Service-layer operations for the audit trail; writes and reads AuditLog rows.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Union

from flask import current_app

from ..extensions import db
from ..models import AuditLog, AUDIT_ACTIONS, Category, Product, ProductCategory
from ..validation import ValidationError
from .pagination import paginate
from shopadmin.time_utils import to_utc_z, utcnow
"""
Audit Trail Invariants (authoritative)

- Exactly one AuditLog row per observed lifecycle transition of a product,
  category or product-category link.
- Writes happen inside a SAVEPOINT of the caller's transaction, right after
  the mutation was flushed, so rows for one subject follow persistence order.
- An audit write failure rolls back the SAVEPOINT only, is logged, and is
  never raised: the caller's mutation still commits.
- Attribution: the acting admin when one is given, else the subject's owner.
  Link events are always attributed to the product's owner.
- Rows are never updated. They are deleted only together with their subject
  or with their admin.
"""


# Bookkeeping columns that never count as a change
IGNORED_CHANGE_FIELDS = frozenset({"created_at", "updated_at", "version_id"})


class AuditWriteError(Exception):
    """Raised inside record() when an audit row cannot be built or written."""


class AuditableKind(str, Enum):
    PRODUCT = "Product"
    CATEGORY = "Category"
    PRODUCT_CATEGORY = "ProductCategory"

    @classmethod
    def from_param(cls, value: str) -> "AuditableKind":
        """Accept 'Product', 'products', 'product_categories', ..."""
        key = (value or "").strip().replace("-", "_").lower()
        aliases = {
            "product": cls.PRODUCT,
            "products": cls.PRODUCT,
            "category": cls.CATEGORY,
            "categories": cls.CATEGORY,
            "productcategory": cls.PRODUCT_CATEGORY,
            "product_category": cls.PRODUCT_CATEGORY,
            "product_categories": cls.PRODUCT_CATEGORY,
        }
        if key not in aliases:
            raise ValidationError(f"Unknown auditable type: {value}")
        return aliases[key]


@dataclass(frozen=True)
class ProductSubject:
    kind: ClassVar[AuditableKind] = AuditableKind.PRODUCT
    id: int


@dataclass(frozen=True)
class CategorySubject:
    kind: ClassVar[AuditableKind] = AuditableKind.CATEGORY
    id: int


@dataclass(frozen=True)
class ProductCategorySubject:
    kind: ClassVar[AuditableKind] = AuditableKind.PRODUCT_CATEGORY
    id: int


AuditSubject = Union[ProductSubject, CategorySubject, ProductCategorySubject]


def subject_for(entity) -> AuditSubject:
    if isinstance(entity, Product):
        return ProductSubject(entity.id)
    if isinstance(entity, Category):
        return CategorySubject(entity.id)
    if isinstance(entity, ProductCategory):
        return ProductCategorySubject(entity.id)
    raise AuditWriteError(f"{type(entity).__name__} is not auditable")


def jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


def snapshot(entity) -> dict:
    """Full column snapshot of an entity, JSON-ready."""
    return {
        col.key: jsonable(getattr(entity, col.key))
        for col in entity.__mapper__.columns
    }


def diff(before: dict, after: dict) -> dict:
    """
    {field: [old, new]} for every changed, non-bookkeeping column.
    Both arguments are snapshots.
    """
    changes = {}
    for key, new in after.items():
        if key in IGNORED_CHANGE_FIELDS:
            continue
        old = before.get(key)
        if old != new:
            changes[key] = [old, new]
    return changes


def _build_log(action: str, subject: AuditSubject, admin_id: int | None, changeset: dict) -> AuditLog:
    if action not in AUDIT_ACTIONS:
        raise AuditWriteError(f"Unknown audit action: {action}")
    if admin_id is None:
        raise AuditWriteError("Audit entry has no admin to attribute")
    if subject.id is None:
        raise AuditWriteError("Audit subject has no id (not flushed?)")
    if not isinstance(changeset, dict) or not changeset:
        raise AuditWriteError("Audit changeset must be a non-empty mapping")

    return AuditLog(
        action=action,
        admin_id=admin_id,
        auditable_type=subject.kind.value,
        auditable_id=subject.id,
        changes_data=jsonable(changeset),
        created_at=utcnow(),
    )


def _persist(log: AuditLog) -> None:
    db.session.add(log)
    db.session.flush()


def record(
    action: str,
    subject: AuditSubject,
    *,
    admin_id: int | None,
    changeset: dict,
) -> AuditLog | None:
    """
    Write one audit row for `subject` in a SAVEPOINT.

    Returns the row, or None when the write failed; failures are logged and
    never propagate to the caller.
    """
    try:
        with db.session.begin_nested():
            log = _build_log(action, subject, admin_id, changeset)
            _persist(log)
        return log
    except Exception:
        current_app.logger.exception(
            "Failed to create audit log (%s %s#%s)", action, subject.kind.value, subject.id
        )
        return None


def _attribute(acting_admin_id: int | None, owner_admin_id: int | None) -> int | None:
    return acting_admin_id if acting_admin_id is not None else owner_admin_id


def record_created(entity, *, acting_admin_id: int | None = None) -> AuditLog | None:
    return record(
        "created",
        subject_for(entity),
        admin_id=_attribute(acting_admin_id, entity.admin_id),
        changeset=snapshot(entity),
    )


def record_updated(entity, before: dict, *, acting_admin_id: int | None = None) -> AuditLog | None:
    """No row when nothing but bookkeeping columns changed."""
    changes = diff(before, snapshot(entity))
    if not changes:
        return None
    return record(
        "updated",
        subject_for(entity),
        admin_id=_attribute(acting_admin_id, entity.admin_id),
        changeset=changes,
    )


def record_deleted(
    subject: AuditSubject,
    final_state: dict,
    *,
    owner_admin_id: int,
    acting_admin_id: int | None = None,
) -> AuditLog | None:
    return record(
        "deleted",
        subject,
        admin_id=_attribute(acting_admin_id, owner_admin_id),
        changeset=final_state,
    )


def record_link_event(link: ProductCategory, action: str) -> AuditLog | None:
    """category_associated / category_disassociated, attributed to the product owner."""
    return record(
        action,
        ProductCategorySubject(link.id),
        admin_id=link.product.admin_id if link.product else None,
        changeset={
            "category_id": link.category_id,
            "category_name": link.category.name if link.category else None,
        },
    )


def delete_subject_logs(subject: AuditSubject) -> int:
    """Cascade helper: drop the history of a subject that is being deleted."""
    return (
        db.session.query(AuditLog)
        .filter(
            AuditLog.auditable_type == subject.kind.value,
            AuditLog.auditable_id == subject.id,
        )
        .delete(synchronize_session=False)
    )


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

def _subject_label(log: AuditLog, cache: dict) -> str:
    key = (log.auditable_type, log.auditable_id)
    if key in cache:
        return cache[key]

    label = f"{log.auditable_type} #{log.auditable_id}"
    if log.auditable_type == AuditableKind.PRODUCT.value:
        product = db.session.get(Product, log.auditable_id)
        if product:
            label = product.name
    elif log.auditable_type == AuditableKind.CATEGORY.value:
        category = db.session.get(Category, log.auditable_id)
        if category:
            label = category.name
    elif log.auditable_type == AuditableKind.PRODUCT_CATEGORY.value:
        link = db.session.get(ProductCategory, log.auditable_id)
        if link and link.product and link.category:
            label = f"Product {link.product.name} - Category {link.category.name}"

    cache[key] = label
    return label


def _serialize(logs: list[AuditLog]) -> list[dict]:
    cache: dict = {}
    return [log.to_dict(subject_name=_subject_label(log, cache)) for log in logs]


def list_audit_logs(
    *,
    page: int | None = None,
    per_page: int | None = None,
    action: str | None = None,
    auditable_type: str | None = None,
    admin_id: int | None = None,
) -> dict:
    """Newest first, paginated (default 10 per page, max 100)."""
    query = db.session.query(AuditLog)
    if action:
        if action not in AUDIT_ACTIONS:
            raise ValidationError(f"action must be one of: {', '.join(AUDIT_ACTIONS)}")
        query = query.filter(AuditLog.action == action)
    if auditable_type:
        query = query.filter(AuditLog.auditable_type == AuditableKind.from_param(auditable_type).value)
    if admin_id:
        query = query.filter(AuditLog.admin_id == admin_id)

    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())

    logs, meta = paginate(query, page, per_page, default_per_page=10)
    return {
        "audit_logs": _serialize(logs),
        "pagination": meta,
    }


def recent_audit_logs(*, within: timedelta = timedelta(hours=1), limit: int = 20) -> dict:
    logs = (
        db.session.query(AuditLog)
        .filter(AuditLog.created_at >= utcnow() - within)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
    return {
        "audit_logs": _serialize(logs),
        "total_count": len(logs),
        "time_range": "Last hour",
    }


def audit_logs_for(entity_type: str, entity_id: int) -> dict:
    kind = AuditableKind.from_param(entity_type)
    logs = (
        db.session.query(AuditLog)
        .filter(AuditLog.auditable_type == kind.value, AuditLog.auditable_id == entity_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .all()
    )
    return {
        "audit_logs": _serialize(logs),
        "entity_type": kind.value,
        "entity_id": entity_id,
        "total_count": len(logs),
    }
