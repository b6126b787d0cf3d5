# Overview: Service-layer operations for the timesheet ledger (one row per user, task and day).

"""
Timesheet Ledger

WHY: Spent effort is derived from the ledger only, so every mutation here is
gated by authorization and month locks before anything is written.

RULES:
- (user_id, task_id, date) identifies at most one entry.
- hours must be within [0, 24]; 0 removes the entry instead of storing it.
- the owner, an administrator, or the task project's manager may write.
- no entry dated inside a locked month may be created, changed or removed.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Project, ProjectUser, Stage, Task, TimesheetEntry
from ..task_arena import TaskArena
from ..validation import NotFoundError, ValidationError, coerce_hours, enforce_rules_entry_hours, require_year_month
from . import lock_service, permission_service, staleness_service
from .concurrency import atomic, run_with_retry
from planner.time_utils import month_bounds, parse_iso_date


logger = logging.getLogger(__name__)


GRID_PROJECT_STATUSES = ("created", "in_progress")


def _parse_day(value):
    try:
        day = parse_iso_date(value)
    except ValueError:
        raise ValidationError("date must be an ISO-8601 date")
    if day is None:
        raise ValidationError("date is required")
    return day


def _get_entry(entry_id: int) -> TimesheetEntry:
    entry = db.session.get(TimesheetEntry, entry_id) if entry_id is not None else None
    if not entry:
        raise NotFoundError(f"Timesheet entry {entry_id} not found")
    return entry


def upsert_entry(user_id: int, task_id: int, date, hours, entered_by: int, description: str | None = None):
    """
    Set the hours of one grid cell.

    Returns the stored entry, or None when hours is 0 (the cell is cleared).
    """
    hours = coerce_hours(hours)
    enforce_rules_entry_hours(hours)
    day = _parse_day(date)

    owner = permission_service.get_user(user_id)
    actor = permission_service.get_user(entered_by)
    task = db.session.get(Task, task_id) if task_id is not None else None
    if not task:
        raise NotFoundError(f"Task {task_id} not found")

    permission_service.require_timesheet_editor(actor, owner.id, task.project)

    def _op():
        with atomic():
            lock_service.require_unlocked(task.project_id, day)
            entry = db.session.query(TimesheetEntry).filter_by(
                user_id=owner.id,
                task_id=task.id,
                date=day,
            ).first()

            if hours == 0:
                if entry is not None:
                    db.session.delete(entry)
                return None

            if entry is None:
                entry = TimesheetEntry(
                    user_id=owner.id,
                    task_id=task.id,
                    date=day,
                    hours=hours,
                    description=description,
                    entered_by=actor.id,
                )
                db.session.add(entry)
            else:
                entry.hours = hours
                entry.entered_by = actor.id
                if description is not None:
                    entry.description = description
            return entry

    entry = run_with_retry(_op)

    if actor.id != owner.id:
        logger.info(
            "User %s logged %s h for user %s on task %s (%s)",
            actor.id, hours, owner.id, task.id, day.isoformat(),
        )
    return entry


def delete_entry(entry_id: int, requesting_user_id: int) -> None:
    entry = _get_entry(entry_id)
    actor = permission_service.get_user(requesting_user_id)
    task = entry.task

    permission_service.require_timesheet_editor(actor, entry.user_id, task.project)

    with atomic():
        lock_service.require_unlocked(task.project_id, entry.date)
        db.session.delete(entry)


def task_ledger_totals(task_ids: Iterable[int]) -> dict[int, Decimal]:
    """Total hours per task across all users; tasks without entries are absent."""
    ids = list(task_ids)
    if not ids:
        return {}
    rows = (
        db.session.query(TimesheetEntry.task_id, func.sum(TimesheetEntry.hours))
        .filter(TimesheetEntry.task_id.in_(ids))
        .group_by(TimesheetEntry.task_id)
        .all()
    )
    return {task_id: Decimal(str(total)) for task_id, total in rows}


def viewable_users(viewer_id: int):
    viewer = permission_service.get_user(viewer_id)
    return permission_service.viewable_users(viewer)


def _grid_projects(user_id: int) -> list[Project]:
    """Open projects the user works on, as a member or as their manager."""
    member_ids = db.session.query(ProjectUser.project_id).filter(ProjectUser.user_id == user_id)
    return (
        db.session.query(Project)
        .filter(
            Project.status.in_(GRID_PROJECT_STATUSES),
            or_(Project.project_manager_id == user_id, Project.id.in_(member_ids)),
        )
        .order_by(Project.name, Project.id)
        .all()
    )


def _ordered_task_ids(arena: TaskArena, stages: list[Stage]) -> list[int]:
    """Tree order: stages in order, unstaged last, each root followed by its descendants."""
    ordered: list[int] = []
    for stage_id in [s.id for s in stages] + [None]:
        for root in arena.roots(stage_id):
            ordered.append(root.id)
            ordered.extend(n.id for n in arena.descendants(root.id))
    return ordered


def timesheet_grid(viewer_id: int, user_id: int | None, year, month) -> dict:
    """
    Everything the monthly grid needs for one user: projects with their tasks
    (ledger totals and staleness), the user's entries of the month and the
    locks applying to those projects.
    """
    year, month = require_year_month(year, month)
    viewer = permission_service.get_user(viewer_id)
    target = viewer if user_id is None else permission_service.get_user(user_id)
    permission_service.require_can_view_user(viewer, target.id)

    projects = _grid_projects(target.id)
    project_ids = [p.id for p in projects]

    tasks = db.session.query(Task).filter(Task.project_id.in_(project_ids)).all() if project_ids else []
    totals = task_ledger_totals(t.id for t in tasks)
    stage_names = {
        s.id: s.name
        for s in db.session.query(Stage).filter(Stage.project_id.in_(project_ids)).all()
    } if project_ids else {}

    project_dicts = []
    for project in projects:
        project_tasks = [t for t in tasks if t.project_id == project.id]
        by_id = {t.id: t for t in project_tasks}
        arena = TaskArena.from_tasks(project_tasks)
        stages = sorted(
            (s for s in project.stages),
            key=lambda s: (s.order, s.id),
        )

        task_dicts = []
        for task_id in _ordered_task_ids(arena, stages):
            task = by_id[task_id]
            total = totals.get(task.id, Decimal("0"))
            stage_id = arena.effective_stage_id(task.id)
            task_dicts.append({
                "id": task.id,
                "name": task.name,
                "parent_task_id": task.parent_task_id,
                "depth": arena.depth(task.id),
                "stage_id": stage_id,
                "stage_name": stage_names.get(stage_id),
                "status": task.status,
                "sold_days": float(task.sold_days or 0),
                "remaining_hours": float(task.remaining_hours) if task.remaining_hours is not None else None,
                "last_remaining_update_total": (
                    float(task.last_remaining_update_total)
                    if task.last_remaining_update_total is not None else None
                ),
                "total_hours": float(total),
                "remaining_stale": staleness_service.is_remaining_stale(
                    task.remaining_hours, task.last_remaining_update_total, total,
                ),
            })

        project_dicts.append({
            "id": project.id,
            "name": project.name,
            "status": project.status,
            "tasks": task_dicts,
        })

    first_day, last_day = month_bounds(year, month)
    entries = (
        db.session.query(TimesheetEntry)
        .filter(
            TimesheetEntry.user_id == target.id,
            TimesheetEntry.date >= first_day,
            TimesheetEntry.date <= last_day,
        )
        .order_by(TimesheetEntry.date, TimesheetEntry.task_id)
        .all()
    )

    locks = lock_service.list_locks(year=year, month=month, project_ids=project_ids)

    return {
        "user": target.to_dict(),
        "year": year,
        "month": month,
        "projects": project_dicts,
        "entries": [e.to_dict() for e in entries],
        "locks": [lock.to_dict() for lock in locks],
    }
