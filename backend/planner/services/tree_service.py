# Overview: Service-layer operations for stages and tasks; owns the tree's structural invariants.

"""
Task Tree Store

Stages order a project's top-level tasks; tasks nest to any depth through
parent_task_id. Structural changes (stage, parent, order) only happen here on
create and in reorder_service.move; plain updates never touch them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func

from ..extensions import db
from ..models import Project, Stage, Task, TimesheetEntry, User
from ..task_arena import TaskArena
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_stage,
    enforce_rules_task,
    validate_payload,
)
from .concurrency import atomic, lock_for_update
from . import lock_service
from planner.time_utils import utcnow


logger = logging.getLogger(__name__)


STAGE_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "order", "start_date", "end_date", "description", "is_completed"}),
    required_on_create=frozenset({"name"}),
)
STAGE_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "start_date", "end_date", "description", "is_completed"}),
)

_TASK_FIELDS = frozenset({
    "name", "description", "sold_days", "responsible_id", "priority", "status", "start_date", "due_date",
})
TASK_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=_TASK_FIELDS | {"stage_id", "parent_task_id"},
    required_on_create=frozenset({"name"}),
)
TASK_UPDATE_POLICY = ModelValidationPolicy(writable_fields=_TASK_FIELDS)


@dataclass(frozen=True)
class SiblingGroup:
    """Tasks sharing (project, stage_id, parent_task_id) are ordered together."""
    project_id: int
    stage_id: int | None = None
    parent_task_id: int | None = None

    @classmethod
    def of(cls, task: Task) -> "SiblingGroup":
        return cls(task.project_id, task.stage_id, task.parent_task_id)


@dataclass
class DeleteResult:
    deleted_ids: list[int]
    group: SiblingGroup
    removed_entries: int = 0


# -----------------------------------------------------------------------------
# Lookups
# -----------------------------------------------------------------------------

def get_stage(stage_id: int) -> Stage:
    stage = db.session.get(Stage, stage_id) if stage_id is not None else None
    if not stage:
        raise NotFoundError(f"Stage {stage_id} not found")
    return stage


def get_task(task_id: int) -> Task:
    task = db.session.get(Task, task_id) if task_id is not None else None
    if not task:
        raise NotFoundError(f"Task {task_id} not found")
    return task


def _get_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id) if project_id is not None else None
    if not project:
        raise NotFoundError(f"Project {project_id} not found")
    return project


def list_stages(project_id: int, *, for_update: bool = False) -> list[Stage]:
    query = db.session.query(Stage).filter_by(project_id=project_id).order_by(Stage.order, Stage.id)
    if for_update:
        query = lock_for_update(query)
    return query.all()


def list_sibling_group(group: SiblingGroup, *, for_update: bool = False) -> list[Task]:
    query = db.session.query(Task).filter(Task.project_id == group.project_id)
    if group.parent_task_id is not None:
        query = query.filter(Task.parent_task_id == group.parent_task_id)
    else:
        query = query.filter(Task.parent_task_id.is_(None))
        if group.stage_id is None:
            query = query.filter(Task.stage_id.is_(None))
        else:
            query = query.filter(Task.stage_id == group.stage_id)
    query = query.order_by(Task.display_order, Task.id)
    if for_update:
        query = lock_for_update(query)
    return query.all()


def _next_display_order(group: SiblingGroup) -> int:
    tasks = list_sibling_group(group)
    if not tasks:
        return 0
    return max(t.display_order for t in tasks) + 1


def _next_stage_order(project_id: int) -> int:
    current = db.session.query(func.max(Stage.order)).filter(Stage.project_id == project_id).scalar()
    return 0 if current is None else current + 1


def subtree_ids(task_id: int) -> list[int]:
    """The task id followed by every descendant id, breadth first."""
    ids = [task_id]
    seen = {task_id}
    frontier = [task_id]
    while frontier:
        children = [
            row.id
            for row in db.session.query(Task.id).filter(Task.parent_task_id.in_(frontier)).all()
            if row.id not in seen
        ]
        seen.update(children)
        ids.extend(children)
        frontier = children
    return ids


def load_project_arena(project_id: int) -> TaskArena:
    tasks = db.session.query(Task).filter_by(project_id=project_id).all()
    return TaskArena.from_tasks(tasks)


# -----------------------------------------------------------------------------
# Stages
# -----------------------------------------------------------------------------

def create_stage(project_id: int, payload: dict) -> Stage:
    project = _get_project(project_id)
    patch = validate_payload(model=Stage, payload=payload, policy=STAGE_CREATE_POLICY, partial=False)
    enforce_rules_stage(patch)

    order = patch.pop("order", None)
    if order is None:
        order = _next_stage_order(project.id)
    elif db.session.query(Stage.id).filter_by(project_id=project.id, order=order).first():
        raise ConflictError(f"Stage order {order} is already used in this project")

    stage = Stage(project_id=project.id, order=order, **patch)
    with atomic():
        db.session.add(stage)
    return stage


def update_stage(stage_id: int, payload: dict) -> Stage:
    """Partial update: keys present in payload overwrite (null included), absent keys are kept."""
    stage = get_stage(stage_id)
    patch = validate_payload(model=Stage, payload=payload, policy=STAGE_UPDATE_POLICY, partial=True)
    enforce_rules_stage(patch, current=stage)

    with atomic():
        for key, value in patch.items():
            setattr(stage, key, value)
    return stage


def delete_stage(stage_id: int) -> None:
    stage = get_stage(stage_id)
    task_count = db.session.query(func.count(Task.id)).filter(Task.stage_id == stage.id).scalar()
    if task_count:
        raise ConflictError(f"Stage still owns {task_count} task(s); move or delete them first")

    with atomic():
        db.session.delete(stage)


# -----------------------------------------------------------------------------
# Tasks
# -----------------------------------------------------------------------------

def _check_responsible(user_id: int | None) -> None:
    if user_id is None:
        return
    if not db.session.get(User, user_id):
        raise NotFoundError(f"User {user_id} not found")


def _apply_status(task: Task, status: str) -> None:
    if status == "done" and task.status != "done":
        task.completed_at = utcnow()
    elif status != "done":
        task.completed_at = None
    task.status = status


def create_task(project_id: int, payload: dict, *, created_by: int | None = None) -> Task:
    """
    Create a task at the end of its sibling group.

    With parent_task_id the task is a subtask: the parent must exist in the
    same project and no stage_id may be given.
    """
    project = _get_project(project_id)
    patch = validate_payload(model=Task, payload=payload, policy=TASK_CREATE_POLICY, partial=False)
    enforce_rules_task(patch)

    parent_task_id = patch.pop("parent_task_id", None)
    stage_id = patch.pop("stage_id", None)

    if parent_task_id is not None:
        if "stage_id" in payload and payload["stage_id"] is not None:
            raise ValidationError("Subtasks cannot carry a stage_id; they inherit their parent's stage")
        parent = get_task(parent_task_id)
        if parent.project_id != project.id:
            raise ValidationError("Parent task belongs to another project")
        stage_id = None
    elif stage_id is not None:
        stage = get_stage(stage_id)
        if stage.project_id != project.id:
            raise ValidationError("Stage belongs to another project")

    _check_responsible(patch.get("responsible_id"))

    group = SiblingGroup(project.id, stage_id, parent_task_id)
    status = patch.pop("status", "todo")
    task = Task(
        project_id=project.id,
        stage_id=stage_id,
        parent_task_id=parent_task_id,
        display_order=_next_display_order(group),
        created_by=created_by,
        **patch,
    )
    _apply_status(task, status)

    with atomic():
        db.session.add(task)
    return task


def update_task(task_id: int, payload: dict) -> Task:
    """Partial update of descriptive fields. Structure changes go through reorder_service.move."""
    task = get_task(task_id)
    patch = validate_payload(model=Task, payload=payload, policy=TASK_UPDATE_POLICY, partial=True)
    enforce_rules_task(patch, current=task)

    if "responsible_id" in patch:
        _check_responsible(patch["responsible_id"])
        if patch["responsible_id"] != task.responsible_id:
            logger.info(
                "Task %s reassigned from user %s to user %s",
                task.id, task.responsible_id, patch["responsible_id"],
            )

    with atomic():
        if "status" in patch:
            _apply_status(task, patch.pop("status"))
        for key, value in patch.items():
            setattr(task, key, value)
    return task


def delete_task(task_id: int) -> DeleteResult:
    """
    Delete a task with its whole subtree and their ledger entries.

    Refused with LockedError if any of those entries sits in a locked month.
    The returned group lost an entry; callers may compact it.
    """
    task = get_task(task_id)
    group = SiblingGroup.of(task)
    ids = subtree_ids(task.id)

    with atomic() as session:
        entry_days = (
            session.query(TimesheetEntry.date)
            .filter(TimesheetEntry.task_id.in_(ids))
            .distinct()
            .all()
        )
        seen_months: set[tuple[int, int]] = set()
        for (day,) in entry_days:
            if (day.year, day.month) in seen_months:
                continue
            seen_months.add((day.year, day.month))
            lock_service.require_unlocked(task.project_id, day)

        removed_entries = session.query(func.count(TimesheetEntry.id)).filter(
            TimesheetEntry.task_id.in_(ids)
        ).scalar()
        session.delete(task)

    logger.info("Deleted task %s with %d descendant(s)", task_id, len(ids) - 1)
    return DeleteResult(
        deleted_ids=ids,
        group=group,
        removed_entries=removed_entries or 0,
    )
