from __future__ import annotations
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from planner.time_utils import parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


TASK_PRIORITIES = ("low", "medium", "high", "urgent")
TASK_STATUSES = ("todo", "in_progress", "review", "done", "blocked")

MAX_HOURS_PER_ENTRY = Decimal("24")
HOURS_QUANTUM = Decimal("0.01")


class PlannerError(Exception):
    """Base for every domain failure surfaced to callers."""

    code = "error"
    status = 500


class ValidationError(PlannerError, ValueError):
    """400-level input problem."""

    code = "validation_error"
    status = 400


class ForbiddenError(PlannerError):
    """Caller is identified but not allowed to perform the operation."""

    code = "forbidden"
    status = 403


class NotFoundError(PlannerError, LookupError):
    code = "not_found"
    status = 404


class ConflictError(PlannerError, ValueError):
    """409-level business rule conflict (e.g., existing lock, non-empty stage)."""

    code = "conflict"
    status = 409


class InvalidMoveError(PlannerError, ValueError):
    """Reparenting would make a task its own ancestor."""

    code = "invalid_move"
    status = 409


class LockedError(PlannerError):
    """Ledger mutation inside a locked month."""

    code = "locked"
    status = 423


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    # Keyed by mapped attribute name; a few columns carry a different SQL name
    mapper = model.__mapper__
    return {attr.key: attr.columns[0] for attr in mapper.column_attrs}


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
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        raise ValidationError(f"{col.key} must be an integer")

    # Decimals (days, hours) - accept numbers and numeric strings, never booleans
    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        if isinstance(value, (int, float, Decimal, str)):
            try:
                dec = Decimal(str(value).strip())
            except InvalidOperation:
                raise ValidationError(f"{col.key} must be a number")
            if not dec.is_finite():
                raise ValidationError(f"{col.key} must be a finite number")
            return dec
        raise ValidationError(f"{col.key} must be a number")

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        raise ValidationError(f"{col.key} must be a datetime")

    # Dates (accept "YYYY-MM-DD" or an ISO datetime truncated to its day)
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
    partial=True: patch semantics (validate only provided keys; an explicit
    null is kept in the patch so callers can clear a value)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
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


def _check_date_range(start, end, label: str) -> None:
    if start is not None and end is not None and start > end:
        raise ValidationError(f"{label} start date must not be after its end date")


def enforce_rules_stage(patch: dict, *, current=None) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    `current` is the persisted stage for partial updates.
    """
    if "order" in patch and patch["order"] is not None and patch["order"] < 0:
        raise ValidationError("order must be >= 0")

    start = patch["start_date"] if "start_date" in patch else getattr(current, "start_date", None)
    end = patch["end_date"] if "end_date" in patch else getattr(current, "end_date", None)
    _check_date_range(start, end, "Stage")


def enforce_rules_task(patch: dict, *, current=None) -> None:
    if "sold_days" in patch and patch["sold_days"] is not None:
        if patch["sold_days"] < 0:
            raise ValidationError("sold_days must be >= 0")

    if "priority" in patch and patch["priority"] not in TASK_PRIORITIES:
        raise ValidationError(f"priority must be one of: {', '.join(TASK_PRIORITIES)}")

    if "status" in patch and patch["status"] not in TASK_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(TASK_STATUSES)}")

    start = patch["start_date"] if "start_date" in patch else getattr(current, "start_date", None)
    due = patch["due_date"] if "due_date" in patch else getattr(current, "due_date", None)
    _check_date_range(start, due, "Task")


def coerce_hours(value: Any, *, field: str = "hours", allow_none: bool = False) -> Decimal | None:
    """
    Normalise an hour quantity to a Decimal at column scale (2 places) and
    check it is >= 0. Anything that rounds to 0.00 comes back as 0.
    """
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        hours = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not hours.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    try:
        hours = hours.quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"{field} is out of range")
    if hours.is_zero():
        return Decimal("0")
    if hours < 0:
        raise ValidationError(f"{field} must be >= 0")
    return hours


def enforce_rules_entry_hours(hours: Decimal) -> None:
    if hours > MAX_HOURS_PER_ENTRY:
        raise ValidationError(f"hours cannot exceed {MAX_HOURS_PER_ENTRY}")


def require_year_month(year: Any, month: Any) -> tuple[int, int]:
    try:
        year_i = int(year)
        month_i = int(month)
    except (TypeError, ValueError):
        raise ValidationError("year and month must be integers")
    if isinstance(year, bool) or isinstance(month, bool):
        raise ValidationError("year and month must be integers")
    if not 1 <= month_i <= 12:
        raise ValidationError("month must be between 1 and 12")
    if not 1900 <= year_i <= 9999:
        raise ValidationError("year is out of range")
    return year_i, month_i
