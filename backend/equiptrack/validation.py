from __future__ import annotations
from datetime import datetime
from equiptrack.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


CONSTRUCTION_TYPES = {"lot", "building"}


class ValidationError(ValueError):
    """400-level input problem or business-rule violation."""

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.code = code


class ConflictError(ValueError):
    """409-level conflict (e.g., optimistic holder check failed)."""


class NotFoundError(LookupError):
    """404-level: referenced unit/extension/event/site does not exist."""


class StoreError(RuntimeError):
    """503-level: the event store is unreachable or returned malformed rows."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


ALLOCATION_EVENT_POLICY = ModelValidationPolicy(
    writable_fields={
        "event_type",
        "unit_id",
        "extension_id",
        "site_id",
        "destination_site_id",
        "supplier_id",
        "construction_type",
        "lot_building_number",
        "event_date",
        "end_date",
        "downtime_reason",
        "downtime_description",
        "created_by",
        "corrects_event_id",
        "correction_description",
        "notes",
    },
    required_on_create={"event_type", "event_date", "created_by"},
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
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
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
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

    # Reject unknown / non-writable fields
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

        if isinstance(col.type, (String, Text)) and val == "":
            if not col.nullable:
                raise ValidationError(f"{k} cannot be blank")
            val = None

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_allocation_event(patch: dict, *, known_event_types) -> None:
    """
    Shape rules for a new allocation event that column metadata cannot express.
    State-dependent rules live in validation_service.
    """
    if patch.get("event_type") not in known_event_types:
        raise ValidationError(f"Unknown event_type: {patch.get('event_type')}")

    if not patch.get("unit_id") and not patch.get("extension_id"):
        raise ValidationError("unit_id or extension_id is required")

    construction_type = patch.get("construction_type")
    if construction_type is not None and construction_type not in CONSTRUCTION_TYPES:
        raise ValidationError("construction_type must be 'lot' or 'building'")

    event_date = patch.get("event_date")
    end_date = patch.get("end_date")
    if event_date is not None and end_date is not None and end_date < event_date:
        raise ValidationError("end_date cannot be before event_date")
