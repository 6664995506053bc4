from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
import re
from urllib.parse import urlparse
from shopadmin.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: 99,999,999.99 (Numeric(10, 2))
MAX_PRICE = Decimal("99999999.99")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\+?[0-9]{8,15}$")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate email)."""


class NotFoundError(LookupError):
    """404-level missing referenced entity."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - extra_fields: non-column keys a route accepts (nested collections)
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    extra_fields: set[str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Numeric before Integer: money comes in as int, float or string
    if isinstance(coltype, Numeric) and not isinstance(coltype, Integer):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        if isinstance(value, (int, float, str, Decimal)):
            try:
                dec = Decimal(str(value).strip())
            except InvalidOperation:
                raise ValidationError(f"{col.key} must be a number")
            if not dec.is_finite():
                raise ValidationError(f"{col.key} must be a number")
            return dec
        raise ValidationError(f"{col.key} must be a number")

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        # String input - must be plain digits (with optional leading minus)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            # Reject scientific notation (e.g., "1e15", "1E10")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            # Reject decimal points (e.g., "12.5")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        # Reject floats explicitly
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        # Other types
        raise ValidationError(f"{col.key} must be an integer")

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")


    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields. Keys listed in
    policy.extra_fields are passed through untouched for the caller.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    extra = policy.extra_fields or set()

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k in extra:
            continue
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in extra:
            patch[k] = raw
            continue

        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def normalize_email(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip().lower()


def _check_length(patch: dict, field: str, minimum: int, maximum: int) -> None:
    if field in patch and patch[field] is not None:
        n = len(patch[field])
        if n < minimum or n > maximum:
            raise ValidationError(f"{field} must be between {minimum} and {maximum} characters")


def _check_email(patch: dict) -> None:
    if "email" in patch:
        patch["email"] = normalize_email(patch["email"])
        if not patch["email"] or not EMAIL_RE.match(patch["email"]):
            raise ValidationError("email is invalid")


def enforce_rules_admin(patch: dict) -> None:
    _check_email(patch)
    _check_length(patch, "name", 2, 100)


def enforce_rules_category(patch: dict) -> None:
    _check_length(patch, "name", 2, 100)
    _check_length(patch, "description", 10, 500)


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _check_length(patch, "name", 2, 200)
    _check_length(patch, "description", 10, 1000)

    if "price" in patch and patch["price"] is not None:
        price = patch["price"]
        if price <= 0:
            raise ValidationError("price must be > 0")
        if price > MAX_PRICE:
            raise ValidationError(f"price cannot exceed {MAX_PRICE}")
        patch["price"] = price.quantize(Decimal("0.01"))

    if "stock" in patch and patch["stock"] is not None:
        if patch["stock"] < 0:
            raise ValidationError("stock must be >= 0")

    if "category_ids" in patch:
        ids = patch["category_ids"]
        if not isinstance(ids, list) or not all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
            raise ValidationError("category_ids must be a list of integers")

    if "images" in patch:
        images = patch["images"]
        if not isinstance(images, list):
            raise ValidationError("images must be a list")
        patch["images"] = [enforce_rules_product_image(img) for img in images]


def enforce_rules_product_image(image: Any) -> dict:
    if not isinstance(image, dict):
        raise ValidationError("each image must be an object")

    url = image.get("image_url")
    if url is None:
        url = image.get("url")
    url = str(url).strip() if url is not None else ""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("image_url must be a valid URL")
    if len(url) > 2048:
        raise ValidationError("image_url exceeds max length 2048")

    caption = image.get("caption")
    caption = str(caption).strip() if caption is not None else ""
    if len(caption) > 200:
        raise ValidationError("caption exceeds max length 200")

    return {"image_url": url, "caption": caption or None}


def enforce_rules_customer(patch: dict) -> None:
    _check_email(patch)
    _check_length(patch, "name", 2, 100)

    if "phone" in patch:
        phone = patch["phone"] or None
        if phone is not None and not PHONE_RE.match(phone):
            raise ValidationError("phone has an invalid format")
        patch["phone"] = phone

    if "address" in patch:
        address = patch["address"] or None
        patch["address"] = address
        _check_length(patch, "address", 10, 500)


def enforce_rules_purchase(patch: dict) -> None:
    for field in ("customer_id", "product_id", "quantity"):
        if patch.get(field) is None:
            raise ValidationError(f"{field} is required")
    if patch["quantity"] <= 0:
        raise ValidationError("quantity must be > 0")
