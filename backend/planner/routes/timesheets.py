# Overview: Flask API routes for the timesheet ledger and month locks.

"""
Timesheet Routes

SECURITY: All routes require an identified caller (X-User-Id).
- Entries: the owner, an administrator, or the project's manager may write.
- Locks: administrators for global locks; administrators or the project's
  manager for project locks.
- Viewing another user's grid requires that user to be viewable.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..extensions import db
from ..services import lock_service, permission_service, timesheet_service
from ..validation import PlannerError, ValidationError, require_year_month


timesheets_bp = Blueprint("timesheets", __name__, url_prefix="/api/timesheets")


def _error(e: PlannerError):
    db.session.rollback()
    return jsonify({"error": str(e), "code": e.code}), e.status


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error", "code": "internal_error"}), 500


def _optional_int(value, field: str):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


@timesheets_bp.get("")
@require_auth
def timesheet_grid_route():
    """
    Query: year, month (required), user_id (optional, defaults to the caller).
    """
    try:
        user_id = _optional_int(request.args.get("user_id"), "user_id")
        grid = timesheet_service.timesheet_grid(
            g.current_user.id,
            user_id,
            request.args.get("year"),
            request.args.get("month"),
        )
        return jsonify(grid)
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to load timesheet")


@timesheets_bp.put("/entries")
@require_auth
def upsert_entry_route():
    """
    Body: task_id, date (YYYY-MM-DD), hours, optional user_id (defaults to
    the caller) and description. hours 0 clears the cell.
    """
    payload = request.get_json(silent=True) or {}
    try:
        user_id = _optional_int(payload.get("user_id"), "user_id") or g.current_user.id
        task_id = _optional_int(payload.get("task_id"), "task_id")
        if task_id is None:
            raise ValidationError("task_id is required")

        entry = timesheet_service.upsert_entry(
            user_id,
            task_id,
            payload.get("date"),
            payload.get("hours"),
            entered_by=g.current_user.id,
            description=payload.get("description"),
        )
        if entry is None:
            return jsonify({"entry": None, "deleted": True})
        return jsonify({"entry": entry.to_dict()})
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to save timesheet entry")


@timesheets_bp.delete("/entries/<int:entry_id>")
@require_auth
def delete_entry_route(entry_id: int):
    try:
        timesheet_service.delete_entry(entry_id, g.current_user.id)
        return jsonify({"deleted": entry_id})
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to delete timesheet entry")


@timesheets_bp.get("/viewable-users")
@require_auth
def viewable_users_route():
    try:
        users = timesheet_service.viewable_users(g.current_user.id)
        return jsonify({"users": [u.to_dict() for u in users]})
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to list viewable users")


# -----------------------------------------------------------------------------
# Locks
# -----------------------------------------------------------------------------

@timesheets_bp.get("/locks")
@require_auth
def list_locks_route():
    """
    Query: year, month (both optional), project_id (optional).

    Administrators see every lock; others see global locks plus those of
    the projects they manage or belong to.
    """
    try:
        year = _optional_int(request.args.get("year"), "year")
        month = _optional_int(request.args.get("month"), "month")
        if year is not None and month is not None:
            year, month = require_year_month(year, month)
        project_id = _optional_int(request.args.get("project_id"), "project_id")

        user = g.current_user
        if project_id is not None:
            project_ids = [project_id]
        elif user.is_administrator:
            project_ids = None
        else:
            project_ids = permission_service.related_project_ids(user)

        locks = lock_service.list_locks(year=year, month=month, project_ids=project_ids)
        return jsonify({"locks": [lock.to_dict() for lock in locks]})
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to list timesheet locks")


@timesheets_bp.post("/locks")
@require_auth
def set_lock_route():
    """Body: year, month, project_id (null or absent for a global lock)."""
    payload = request.get_json(silent=True) or {}
    try:
        lock = lock_service.set_lock(
            project_id=_optional_int(payload.get("project_id"), "project_id"),
            year=payload.get("year"),
            month=payload.get("month"),
            locked_by=g.current_user.id,
        )
        return jsonify({"lock": lock.to_dict()}), 201
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to set timesheet lock")


@timesheets_bp.delete("/locks")
@require_auth
def clear_lock_route():
    """Body (or query string): year, month, project_id (null for the global lock)."""
    payload = request.get_json(silent=True) or request.args.to_dict()
    try:
        lock_service.clear_lock(
            project_id=_optional_int(payload.get("project_id"), "project_id"),
            year=payload.get("year"),
            month=payload.get("month"),
            requested_by=g.current_user.id,
        )
        return jsonify({"cleared": True})
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to clear timesheet lock")
