from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Numeric(10, 2): 8 integer digits, 2 decimals
MAX_PRICE = Decimal("99999999.99")
MAX_STOCK_QUANTITY = 2_147_483_647


class ValidationError(ValueError):
    """400-level input problem. `field` names the offending input when known."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate slug)."""

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.field = field
        self.details = details or {}


class DuplicateSlug(ConflictError):
    """Slug already taken by another row of the same kind."""


class DuplicateSku(ConflictError):
    """SKU already used by a product or a variant."""


class ValueInUse(ConflictError):
    """Attribute value still part of a live variant combination."""


class NotFoundError(LookupError):
    """Requested entity does not exist (or is soft-deleted)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_decimal(field: str, value: Any) -> Decimal:
    # bool is an int subclass; "true" is never a price
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    if isinstance(value, float):
        value = repr(value)
    try:
        dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if not dec.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    if dec.as_tuple().exponent < -2:
        raise ValidationError(f"{field} cannot have more than 2 decimal places", field=field)
    return dec.quantize(Decimal("0.01"))


def coerce_int(field: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field=field)
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field=field)
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    raise ValidationError(f"{field} must be an integer", field=field)


def coerce_bool(field: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    # multipart forms send strings
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off", ""}:
            return False
        raise ValidationError(f"{field} must be a boolean", field=field)
    if isinstance(value, int):
        return bool(value)
    raise ValidationError(f"{field} must be a boolean", field=field)


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Boolean):
        return coerce_bool(col.key, value)

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Numeric):
        return coerce_decimal(col.key, value)

    if isinstance(coltype, JSON):
        return value

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
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", field=missing[0])

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling ("" from forms counts as null for nullable non-text columns)
        if raw is None or (raw == "" and col.nullable and not isinstance(col.type, (String, Text))):
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and isinstance(val, str) and val == "":
            if not col.nullable:
                raise ValidationError(f"{k} cannot be blank", field=k)
            val = None

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[k] = val

    return patch


def _check_price(patch: dict, key: str, label: str | None = None) -> None:
    field = label or key
    price = patch.get(key)
    if price is None:
        return
    if price < 0:
        raise ValidationError(f"{field} must be >= 0", field=field)
    if price > MAX_PRICE:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE}", field=field)


def _check_stock(patch: dict, key: str, label: str | None = None) -> None:
    field = label or key
    qty = patch.get(key)
    if qty is None:
        return
    if qty < 0:
        raise ValidationError(f"{field} must be >= 0", field=field)
    if qty > MAX_STOCK_QUANTITY:
        raise ValidationError(f"{field} is too large", field=field)


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Mode-conditional requirements live in products_service.
    """
    _check_price(patch, "price")
    _check_price(patch, "sale_price")
    _check_stock(patch, "stock_quantity")


def enforce_sale_below_price(price: Decimal | None, sale_price: Decimal | None, field: str = "sale_price") -> None:
    if sale_price is None or price is None:
        return
    if sale_price >= price:
        raise ValidationError(f"{field} must be less than price", field=field)


def enforce_rules_variant(fields: dict, prefix: str) -> None:
    """Scalar rules for one requested variant; prefix is e.g. 'variations.2'."""
    if fields.get("price") is None:
        raise ValidationError(f"{prefix}.price is required", field=f"{prefix}.price")
    if not fields.get("sku"):
        raise ValidationError(f"{prefix}.sku is required", field=f"{prefix}.sku")
    _check_price(fields, "price", f"{prefix}.price")
    _check_price(fields, "sale_price", f"{prefix}.sale_price")
    enforce_sale_below_price(fields.get("price"), fields.get("sale_price"), f"{prefix}.sale_price")
    _check_stock(fields, "stock_quantity", f"{prefix}.stock_quantity")
