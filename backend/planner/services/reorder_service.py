# Overview: The single move/insert protocol for stages, tasks and subtasks.

"""
Reorder Service

move(item_type, item_id, target_container, insert_relative_to, position)

Containers:
- "project"        the project's stage list (stages only)
- "stage:<id>"     top-level tasks of a stage
- "unstaged"       top-level tasks without a stage
- "task:<id>"      subtasks of a task

INVARIANTS (after every move, for the source and destination groups):
- display_order is exactly 0..n-1, no duplicates, no gaps
- a task is never moved into its own subtree (checked before any mutation)
- the whole move is one transaction
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..extensions import db
from ..models import Stage, Task
from ..validation import InvalidMoveError, NotFoundError, ValidationError
from .concurrency import atomic, run_with_retry
from .tree_service import (
    SiblingGroup,
    get_stage,
    get_task,
    list_sibling_group,
    list_stages,
    load_project_arena,
)


logger = logging.getLogger(__name__)


ITEM_STAGE = "stage"
ITEM_TASK = "task"
ITEM_SUBTASK = "subtask"
ITEM_TYPES = (ITEM_STAGE, ITEM_TASK, ITEM_SUBTASK)

POSITION_BEFORE = "before"
POSITION_AFTER = "after"
POSITIONS = (POSITION_BEFORE, POSITION_AFTER)


@dataclass(frozen=True)
class Container:
    kind: str  # project | stage | unstaged | task
    id: int | None = None

    @classmethod
    def parse(cls, value) -> "Container":
        """Accept "project", "unstaged", "root", "stage:<id>", "task:<id>" or a dict."""
        if isinstance(value, Container):
            return value
        if isinstance(value, dict):
            kind = value.get("kind") or value.get("type")
            raw_id = value.get("id")
        elif isinstance(value, str):
            kind, _, raw_id = value.partition(":")
            raw_id = raw_id or None
        else:
            raise ValidationError("target_container is required")

        kind = (kind or "").strip().lower()
        if kind == "root":
            kind = "unstaged"
        if kind in ("project", "unstaged"):
            return cls(kind)
        if kind not in ("stage", "task"):
            raise ValidationError(f"Unknown container: {value!r}")
        try:
            return cls(kind, int(raw_id))
        except (TypeError, ValueError):
            raise ValidationError(f"Container {kind} needs an integer id")


@dataclass
class MoveResult:
    item: object
    source_order: list[int]
    destination_order: list[int]


def _insertion_index(siblings: list, insert_relative_to: int | None, position: str) -> int:
    if insert_relative_to is None:
        return 0 if position == POSITION_BEFORE else len(siblings)
    for index, sibling in enumerate(siblings):
        if sibling.id == insert_relative_to:
            return index if position == POSITION_BEFORE else index + 1
    raise ValidationError(f"Item {insert_relative_to} is not in the destination group")


def _renumber(items: list, attr: str) -> None:
    """
    Assign 0..n-1 in list order.

    Values first go through a negative range so a unique constraint on the
    column never sees two rows with the same final value mid-flush.
    """
    changed = [(i, item) for i, item in enumerate(items) if getattr(item, attr) != i]
    if not changed:
        return
    for i, item in changed:
        setattr(item, attr, -(i + 1))
    db.session.flush()
    for i, item in changed:
        setattr(item, attr, i)
    db.session.flush()


def _check_position(position: str) -> str:
    position = (position or POSITION_AFTER).lower()
    if position not in POSITIONS:
        raise ValidationError(f"position must be one of: {', '.join(POSITIONS)}")
    return position


def _check_relative(insert_relative_to) -> int | None:
    if insert_relative_to is None:
        return None
    if isinstance(insert_relative_to, bool):
        raise ValidationError("insert_relative_to must be an integer id")
    try:
        return int(insert_relative_to)
    except (TypeError, ValueError):
        raise ValidationError("insert_relative_to must be an integer id")


def move(item_type: str, item_id: int, target_container, insert_relative_to=None,
         position: str = POSITION_AFTER) -> MoveResult:
    if item_type not in ITEM_TYPES:
        raise ValidationError(f"item_type must be one of: {', '.join(ITEM_TYPES)}")
    container = Container.parse(target_container)
    position = _check_position(position)
    relative_id = _check_relative(insert_relative_to)

    def _op():
        if item_type == ITEM_STAGE:
            return _move_stage(item_id, container, relative_id, position)
        return _move_task(item_id, container, relative_id, position)

    return run_with_retry(_op)


def _move_stage(stage_id: int, container: Container, relative_id: int | None, position: str) -> MoveResult:
    if container.kind != "project":
        raise ValidationError("Stages can only be moved within their project's stage list")
    stage = get_stage(stage_id)

    with atomic():
        stages = list_stages(stage.project_id, for_update=True)
        ordered = [s for s in stages if s.id != stage.id]
        if relative_id == stage.id:
            index = [s.id for s in stages].index(stage.id)
        else:
            index = _insertion_index(ordered, relative_id, position)
        ordered.insert(index, stage)
        _renumber(ordered, "order")
        result_order = [s.id for s in ordered]

    logger.info("Moved stage %s to position %d in project %s", stage.id, index, stage.project_id)
    return MoveResult(item=stage, source_order=result_order, destination_order=result_order)


def _resolve_destination(task: Task, container: Container) -> SiblingGroup:
    """Map a container onto a sibling group, validating project and cycles before any write."""
    if container.kind == "project":
        raise ValidationError("Tasks cannot be moved into the stage list")

    if container.kind == "unstaged":
        return SiblingGroup(task.project_id, None, None)

    if container.kind == "stage":
        stage = db.session.get(Stage, container.id)
        if not stage:
            raise NotFoundError(f"Stage {container.id} not found")
        if stage.project_id != task.project_id:
            raise ValidationError("Cannot move a task into another project's stage")
        return SiblingGroup(task.project_id, stage.id, None)

    parent = db.session.get(Task, container.id)
    if not parent:
        raise NotFoundError(f"Task {container.id} not found")
    if parent.project_id != task.project_id:
        raise ValidationError("Cannot move a task under another project's task")
    arena = load_project_arena(task.project_id)
    if parent.id == task.id or arena.is_descendant(parent.id, task.id):
        raise InvalidMoveError("A task cannot be moved into itself or one of its subtasks")
    return SiblingGroup(task.project_id, None, parent.id)


def _move_task(task_id: int, container: Container, relative_id: int | None, position: str) -> MoveResult:
    task = get_task(task_id)
    source = SiblingGroup.of(task)
    destination = _resolve_destination(task, container)

    with atomic():
        source_items = list_sibling_group(source, for_update=True)

        if destination == source:
            remaining = [t for t in source_items if t.id != task.id]
            if relative_id == task.id:
                index = [t.id for t in source_items].index(task.id)
            else:
                index = _insertion_index(remaining, relative_id, position)
            remaining.insert(index, task)
            _renumber(remaining, "display_order")
            order = [t.id for t in remaining]
            return MoveResult(item=task, source_order=order, destination_order=order)

        destination_items = list_sibling_group(destination, for_update=True)
        if relative_id == task.id:
            raise ValidationError("Cannot position a task relative to itself in another group")
        index = _insertion_index(destination_items, relative_id, position)

        source_remaining = [t for t in source_items if t.id != task.id]

        task.stage_id = destination.stage_id
        task.parent_task_id = destination.parent_task_id
        # Park the moved task out of range until the destination is renumbered
        task.display_order = -(len(destination_items) + len(source_items) + 1)

        destination_items.insert(index, task)
        _renumber(source_remaining, "display_order")
        _renumber(destination_items, "display_order")

        source_order = [t.id for t in source_remaining]
        destination_order = [t.id for t in destination_items]

    logger.info(
        "Moved task %s from %s to %s at position %d",
        task.id, source, destination, index,
    )
    return MoveResult(item=task, source_order=source_order, destination_order=destination_order)


def compact_group(group: SiblingGroup) -> list[int]:
    """Renumber one sibling group to 0..n-1 keeping its current order."""
    with atomic():
        items = list_sibling_group(group, for_update=True)
        _renumber(items, "display_order")
        return [t.id for t in items]


def compact_project(project_id: int) -> int:
    """Renumber the stage list and every sibling group of a project. Returns groups touched."""
    with atomic():
        _renumber(list_stages(project_id, for_update=True), "order")

        groups = {
            SiblingGroup(t.project_id, t.stage_id, t.parent_task_id)
            for t in db.session.query(Task.project_id, Task.stage_id, Task.parent_task_id)
            .filter(Task.project_id == project_id)
            .distinct()
        }
        for group in groups:
            _renumber(list_sibling_group(group, for_update=True), "display_order")
    return len(groups)
