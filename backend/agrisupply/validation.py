from __future__ import annotations
from datetime import datetime
from agrisupply.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import JSON, Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum money amount: ₹99,99,999.99 (999,999,999 paise)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """
    400-level input problem.

    `errors` carries field-level failures as [{"field": ..., "message": ...}]
    so that forms can render them next to the offending input.
    """

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []

    def to_dict(self) -> dict:
        body = {"error": str(self)}
        if self.errors:
            body["errors"] = self.errors
        return body


class NotFoundError(LookupError):
    """404-level problem: entity absent or not owned by the caller."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate promotion code)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - choices: enum-like fields and their allowed values
    - non_negative: integer fields that may not go below zero
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    choices: dict[str, tuple] = field(default_factory=dict)
    non_negative: set[str] = field(default_factory=set)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
    """Strict integer coercion: rejects floats, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def coerce_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{key} must be a datetime")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        return coerce_datetime(col.key, value)

    # JSON columns hold lists of scalars (crop types, targeting rules)
    if isinstance(coltype, JSON):
        if not isinstance(value, list):
            raise ValidationError(f"{col.key} must be a list")
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
    - a policy allowlist (writable_fields) and enum choices
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    All field problems are collected and raised together as one
    ValidationError whose `errors` list names each field.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    errors: list[dict] = []

    if not partial:
        for f in sorted(policy.required_on_create):
            if f not in payload or payload[f] in (None, ""):
                errors.append({"field": f, "message": f"{f} is required"})

    cols = _columns_by_key(model)
    patch: dict = {}

    for k, raw in payload.items():
        if any(e["field"] == k for e in errors):
            continue
        if k not in policy.writable_fields:
            errors.append({"field": k, "message": f"Field not allowed: {k}"})
            continue
        if k not in cols:
            errors.append({"field": k, "message": f"Unknown field: {k}"})
            continue

        col = cols[k]

        # NULL handling
        if raw is None:
            if col.nullable:
                patch[k] = None
            else:
                errors.append({"field": k, "message": f"{k} cannot be null"})
            continue

        try:
            val = _coerce_value(col, raw)
        except ValidationError as e:
            errors.append({"field": k, "message": str(e)})
            continue

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                errors.append({"field": k, "message": f"{k} cannot be blank"})
                continue

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                errors.append({"field": k, "message": f"{k} exceeds max length {col.type.length}"})
                continue

        allowed = policy.choices.get(k)
        if allowed is not None:
            values = val if isinstance(val, list) else [val]
            bad = [v for v in values if v not in allowed]
            if bad:
                errors.append({"field": k, "message": f"{k} must be one of: {', '.join(allowed)}"})
                continue

        if k in policy.non_negative and isinstance(val, int) and val < 0:
            errors.append({"field": k, "message": f"{k} must be >= 0"})
            continue

        if k.endswith("_cents") and isinstance(val, int) and val > MAX_AMOUNT_CENTS:
            errors.append({"field": k, "message": f"{k} cannot exceed {MAX_AMOUNT_CENTS}"})
            continue

        patch[k] = val

    if errors:
        raise ValidationError("Validation failed", errors=errors)

    return patch


def require_fields(payload: dict, *names: str) -> None:
    """Raise a field-level ValidationError for every missing/blank name."""
    errors = [
        {"field": n, "message": f"{n} is required"}
        for n in names
        if payload.get(n) in (None, "")
    ]
    if errors:
        raise ValidationError("Validation failed", errors=errors)


def positive_amount(key: str, value: Any) -> int:
    """Money amounts arrive as integer paise and must be > 0."""
    amount = coerce_int(key, value)
    if amount <= 0:
        raise ValidationError(
            f"{key} must be greater than 0",
            errors=[{"field": key, "message": "Amount must be greater than 0"}],
        )
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(
            f"{key} cannot exceed {MAX_AMOUNT_CENTS}",
            errors=[{"field": key, "message": f"Amount cannot exceed {MAX_AMOUNT_CENTS}"}],
        )
    return amount


def parse_pagination(args, *, default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    """Read page/limit query params (1-indexed page, limit clamped to max_limit)."""
    page = args.get("page", default=1, type=int) or 1
    limit = args.get("limit", default=default_limit, type=int) or default_limit
    return max(page, 1), max(1, min(limit, max_limit))
