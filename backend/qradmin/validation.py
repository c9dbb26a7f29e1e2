from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .time_utils import parse_iso_date, parse_iso_datetime


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ValidationError(ValueError):
    """400-level input problem."""


class NotFoundError(ValueError):
    """404-level missing entity."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate branch code, KYC already pending)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or not stripped.lstrip("-").isdigit():
                raise ValidationError(f"{col.key} must be an integer")
            return int(stripped)
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValidationError(f"{col.key} must be a boolean")

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

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            if d is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            return d
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, JSON):
        if not isinstance(value, (dict, list)):
            raise ValidationError(f"{col.key} must be an object or list")
        return value

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against SQLAlchemy column metadata
    and a policy allowlist. Returns a cleaned patch dict with only writable
    fields.

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
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}
    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def require_positive_int(value: Any, field: str) -> int:
    """Strict positive integer check for counts taken straight from JSON."""
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value.strip())
        else:
            raise ValidationError(f"{field} must be a positive integer")
    if value <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return value


def require_text(value: Any, field: str) -> str:
    if value is None or str(value).strip() == "":
        raise ValidationError(f"{field} is required")
    return str(value).strip()


def enforce_rules_branch(patch: dict) -> None:
    if "branch_type" in patch and patch["branch_type"] not in ("domestic", "international"):
        raise ValidationError("type must be domestic or international")
    if "branch_code" in patch and patch["branch_code"] is not None:
        patch["branch_code"] = patch["branch_code"].upper()


def enforce_rules_merchant(patch: dict) -> None:
    email = patch.get("email")
    if email and not EMAIL_RE.match(email):
        raise ValidationError("email is not a valid address")


def enforce_rules_user(patch: dict, valid_roles: set[str]) -> None:
    if "role" in patch and patch["role"] not in valid_roles:
        raise ValidationError(f"role must be one of: {', '.join(sorted(valid_roles))}")
    email = patch.get("email")
    if email and not EMAIL_RE.match(email):
        raise ValidationError("email is not a valid address")


def enforce_rules_audit_item(
    patch: dict,
    *,
    categories: tuple[str, ...],
    risk_levels: tuple[str, ...],
    statuses: tuple[str, ...],
) -> None:
    if "category" in patch and patch["category"] not in categories:
        raise ValidationError(f"category must be one of: {', '.join(categories)}")
    if "risk_level" in patch and patch["risk_level"] not in risk_levels:
        raise ValidationError(f"risk_level must be one of: {', '.join(risk_levels)}")
    if "status" in patch and patch["status"] not in statuses:
        raise ValidationError(f"status must be one of: {', '.join(statuses)}")
    score = patch.get("score")
    if score is not None and not 0 <= score <= 100:
        raise ValidationError("score must be between 0 and 100")
    evidence = patch.get("evidence")
    if evidence is not None and not (isinstance(evidence, list) and all(isinstance(e, str) for e in evidence)):
        raise ValidationError("evidence must be a list of strings")
