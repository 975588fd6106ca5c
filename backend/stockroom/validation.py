from __future__ import annotations
from datetime import datetime
from stockroom.time_utils import parse_iso_datetime, parse_range_end

from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import InvalidArgumentError


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


class ValidationError(InvalidArgumentError):
    """400-level input problem."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class RequestSchema:
    """
    Explicit input shape for an operation whose payload is not a model row
    (stock changes, refunds, role checks).

    Fields are declared as unbound SQLAlchemy columns so they share the same
    coercion rules as model payloads.
    """
    fields: tuple[Column, ...]
    required: frozenset[str] = frozenset()

    def columns(self) -> dict[str, Column]:
        return {c.key: c for c in self.fields}


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

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

    if isinstance(coltype, Float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{col.key} must be a number")
        return float(value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

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
        if isinstance(value, (dict, list)):
            raise ValidationError(f"{col.key} must be a string")
        return str(value).strip()

    # Default: leave as-is
    return value


def _clean_fields(payload: dict, cols: dict[str, Any], allowed: Iterable[str]) -> dict:
    allowed = set(allowed)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in allowed:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
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


def _require_object(payload) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


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
    payload = _require_object(payload)

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    return _clean_fields(payload, _columns_by_key(model), policy.writable_fields)


def validate_request(*, payload: dict, schema: RequestSchema) -> dict:
    """Validate a payload against an explicit request schema (all keys known up front)."""
    payload = _require_object(payload)
    cols = schema.columns()

    missing = sorted(f for f in schema.required if f not in payload)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    return _clean_fields(payload, cols, cols.keys())


def validate_line_items(raw, *, schema: RequestSchema, name: str = "items") -> list[dict]:
    """Validate a non-empty JSON array of objects, each against ``schema``."""
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{name} must be a non-empty list")
    lines = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"{name}[{index}] must be an object")
        try:
            lines.append(validate_request(payload=entry, schema=schema))
        except ValidationError as e:
            raise ValidationError(f"{name}[{index}]: {e.message}") from e
    return lines


def enforce_rules_item(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for key in ("price_cents", "cost_cents"):
        if key in patch and patch[key] is not None:
            value = patch[key]
            if value < 0:
                raise ValidationError(f"{key} must be >= 0")
            if value > MAX_PRICE_CENTS:
                raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")

    if "quantity" in patch and patch["quantity"] is not None and patch["quantity"] < 0:
        raise ValidationError("quantity must be >= 0")

    if "min_stock_level" in patch and patch["min_stock_level"] is not None and patch["min_stock_level"] < 0:
        raise ValidationError("min_stock_level must be >= 0")


def require_positive(value: int, name: str = "quantity") -> int:
    if value is None or value <= 0:
        raise ValidationError(f"{name} must be > 0")
    return value


def require_non_negative(value: int, name: str) -> int:
    if value is None or value < 0:
        raise ValidationError(f"{name} must be >= 0")
    return value


def parse_int_arg(raw: str | None, name: str, *, default: int | None = None, minimum: int | None = None) -> int | None:
    """Strict integer parsing for query-string arguments."""
    if raw is None or raw.strip() == "":
        return default
    value = _coerce_value(Column(name, Integer), raw)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    return value


def parse_datetime_arg(raw: str | None, name: str, *, end_of_range: bool = False):
    if raw is None or raw.strip() == "":
        return None
    try:
        return parse_range_end(raw) if end_of_range else parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime")
