# Overview: Flask API routes for the project tree (stages, tasks, moves, rollups).

"""
Project Tree Routes

SECURITY: All routes require an identified caller (X-User-Id).
- Reading or editing a project's tree requires being an administrator, the
  project's manager, or a project member.
- Structural changes (stage, parent, order) only go through POST .../move.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..extensions import db
from ..services import aggregation_service, reorder_service, staleness_service, tree_service
from ..services.concurrency import atomic
from ..services.permission_service import get_project, require_project_editor
from ..validation import NotFoundError, PlannerError, ValidationError


projects_bp = Blueprint("projects", __name__, url_prefix="/api")


def _error(e: PlannerError):
    db.session.rollback()
    return jsonify({"error": str(e), "code": e.code}), e.status


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error", "code": "internal_error"}), 500


def _require_editor(project_id: int):
    project = get_project(project_id)
    require_project_editor(g.current_user, project)
    return project


@projects_bp.get("/projects/<int:project_id>/tree")
@require_auth
def project_tree_route(project_id: int):
    """
    Stages with nested tasks, the unstaged group and project totals.

    Figures are in days, converted with the caller's daily work hours.
    """
    try:
        _require_editor(project_id)
        daily_hours = aggregation_service.resolve_daily_hours(g.current_user)
        return jsonify(aggregation_service.project_tree(project_id, daily_hours))
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to build project tree")


# -----------------------------------------------------------------------------
# Stages
# -----------------------------------------------------------------------------

@projects_bp.post("/projects/<int:project_id>/stages")
@require_auth
def create_stage_route(project_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        _require_editor(project_id)
        stage = tree_service.create_stage(project_id, payload)
        return jsonify({"stage": stage.to_dict()}), 201
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to create stage")


@projects_bp.patch("/stages/<int:stage_id>")
@require_auth
def update_stage_route(stage_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        stage = tree_service.get_stage(stage_id)
        _require_editor(stage.project_id)
        stage = tree_service.update_stage(stage_id, payload)
        return jsonify({"stage": stage.to_dict()})
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to update stage")


@projects_bp.delete("/stages/<int:stage_id>")
@require_auth
def delete_stage_route(stage_id: int):
    """Refused with 409 while the stage still owns tasks."""
    try:
        stage = tree_service.get_stage(stage_id)
        project_id = stage.project_id
        _require_editor(project_id)
        with atomic():
            tree_service.delete_stage(stage_id)
            reorder_service.compact_project(project_id)
        return jsonify({"deleted": stage_id})
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to delete stage")


# -----------------------------------------------------------------------------
# Tasks
# -----------------------------------------------------------------------------

@projects_bp.post("/projects/<int:project_id>/tasks")
@require_auth
def create_task_route(project_id: int):
    """
    Create a task at the end of its sibling group.

    Body: name (required), optional stage_id or parent_task_id, and the
    descriptive fields (sold_days, responsible_id, priority, status, dates).
    """
    payload = request.get_json(silent=True) or {}
    try:
        _require_editor(project_id)
        task = tree_service.create_task(project_id, payload, created_by=g.current_user.id)
        return jsonify({"task": task.to_dict()}), 201
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to create task")


@projects_bp.patch("/tasks/<int:task_id>")
@require_auth
def update_task_route(task_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        task = tree_service.get_task(task_id)
        _require_editor(task.project_id)
        task = tree_service.update_task(task_id, payload)
        return jsonify({"task": task.to_dict()})
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to update task")


@projects_bp.delete("/tasks/<int:task_id>")
@require_auth
def delete_task_route(task_id: int):
    """Deletes the task, its subtasks and their timesheet entries, then closes the gap."""
    try:
        task = tree_service.get_task(task_id)
        _require_editor(task.project_id)
        with atomic():
            result = tree_service.delete_task(task_id)
            order = reorder_service.compact_group(result.group)
        return jsonify({
            "deleted_ids": result.deleted_ids,
            "removed_entries": result.removed_entries,
            "sibling_order": order,
        })
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to delete task")


@projects_bp.put("/tasks/<int:task_id>/remaining-hours")
@require_auth
def set_remaining_hours_route(task_id: int):
    """Body: {"remaining_hours": number | null}."""
    payload = request.get_json(silent=True) or {}
    try:
        if "remaining_hours" not in payload:
            raise ValidationError("remaining_hours is required (null clears it)")
        task = staleness_service.set_remaining_hours(
            task_id,
            payload.get("remaining_hours"),
            requested_by=g.current_user.id,
        )
        return jsonify({"task": task.to_dict(), "remaining_stale": False})
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to set remaining hours")


# -----------------------------------------------------------------------------
# Moves
# -----------------------------------------------------------------------------

@projects_bp.post("/projects/<int:project_id>/move")
@require_auth
def move_route(project_id: int):
    """
    Body:
    - item_type: "stage" | "task" | "subtask"
    - item_id
    - target_container: "project" | "unstaged" | "stage:<id>" | "task:<id>"
    - insert_relative_to: sibling id (optional, end of group when absent)
    - position: "before" | "after" (default "after")
    """
    payload = request.get_json(silent=True) or {}
    try:
        _require_editor(project_id)

        item_type = payload.get("item_type")
        item_id = payload.get("item_id")
        if item_type not in reorder_service.ITEM_TYPES:
            raise ValidationError(f"item_type must be one of: {', '.join(reorder_service.ITEM_TYPES)}")
        if not isinstance(item_id, int) or isinstance(item_id, bool):
            raise ValidationError("item_id must be an integer")
        if item_type == reorder_service.ITEM_STAGE:
            item = tree_service.get_stage(item_id)
        else:
            item = tree_service.get_task(item_id)
        if item.project_id != project_id:
            raise NotFoundError(f"{item_type} {item_id} is not part of project {project_id}")

        result = reorder_service.move(
            item_type,
            item.id,
            payload.get("target_container"),
            insert_relative_to=payload.get("insert_relative_to"),
            position=payload.get("position") or reorder_service.POSITION_AFTER,
        )
        return jsonify({
            "item": result.item.to_dict(),
            "source_order": result.source_order,
            "destination_order": result.destination_order,
        })
    except PlannerError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to move item")
