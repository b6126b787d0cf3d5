# Overview: Effort rollups (estimated, spent, remaining, forecast, gap) over the task tree.

"""
Aggregation Engine

Pure functions of (TaskArena, ledger totals per task, daily hours). Nothing
here writes, caches or rounds: every figure is an unrounded Decimal and
rounding happens only when a read model is serialised.

ROLLUP RULES:
- estimated: a task with subtasks is the sum of its subtasks' estimates; its
  own sold_days is ignored. Applies at every depth.
- spent: ledger hours of the task and all its descendants / daily hours.
- remaining: the task's own remaining_hours / daily hours (null -> 0).
- forecast = spent + remaining
- gap % = (1 - forecast / estimated) * 100, None without an estimate
- advancement % = spent / estimated * 100, 0 without an estimate
- stage / project totals sum their top-level tasks, then derive gap and
  advancement from the sums.

COMPLETION:
- a task counts every descendant and the done ones among them; the
  percentage is None without subtasks.
- a stage counts its top-level tasks; the rate is 0 without tasks.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional

from flask import current_app, has_app_context
from sqlalchemy import func

from ..extensions import db
from ..models import Stage, Task, TimesheetEntry, User
from ..task_arena import TaskArena, TaskNode
from ..validation import ValidationError
from . import staleness_service
from .tree_service import list_stages, load_project_arena


DEFAULT_DAILY_WORK_HOURS = Decimal("8")

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def resolve_daily_hours(user: User | None = None) -> Decimal:
    """The user's configured daily hours, else the configured default (8)."""
    if user is not None and user.daily_work_hours is not None:
        hours = to_decimal(user.daily_work_hours)
    elif has_app_context():
        hours = to_decimal(current_app.config.get("DEFAULT_DAILY_WORK_HOURS", DEFAULT_DAILY_WORK_HOURS))
    else:
        hours = DEFAULT_DAILY_WORK_HOURS
    if hours <= 0:
        raise ValidationError("daily work hours must be > 0")
    return hours


def _divisor(daily_hours) -> Decimal:
    hours = to_decimal(daily_hours if daily_hours is not None else DEFAULT_DAILY_WORK_HOURS)
    if hours <= 0:
        raise ValidationError("daily work hours must be > 0")
    return hours


# -----------------------------------------------------------------------------
# Per-task figures
# -----------------------------------------------------------------------------

def estimated_days(arena: TaskArena, task_id: int) -> Decimal:
    subtasks = arena.subtasks(task_id)
    if subtasks:
        return sum((estimated_days(arena, s.id) for s in subtasks), ZERO)
    return to_decimal(arena.node(task_id).sold_days)


def spent_hours(arena: TaskArena, task_id: int, ledger_totals: Mapping[int, Decimal]) -> Decimal:
    total = to_decimal(ledger_totals.get(task_id))
    for node in arena.descendants(task_id):
        total += to_decimal(ledger_totals.get(node.id))
    return total


def spent_days(arena: TaskArena, task_id: int, ledger_totals: Mapping[int, Decimal],
               daily_hours=DEFAULT_DAILY_WORK_HOURS) -> Decimal:
    return spent_hours(arena, task_id, ledger_totals) / _divisor(daily_hours)


def remaining_days(node: TaskNode, daily_hours=DEFAULT_DAILY_WORK_HOURS) -> Decimal:
    return to_decimal(node.remaining_hours) / _divisor(daily_hours)


def forecast_days(spent: Decimal, remaining: Decimal) -> Decimal:
    return spent + remaining


def gap_percent(sold: Decimal, forecast: Decimal) -> Optional[Decimal]:
    """Positive is under budget, negative over budget, None when nothing was sold."""
    if sold <= 0:
        return None
    return (1 - forecast / sold) * HUNDRED


def advancement_percent(sold: Decimal, spent: Decimal) -> Decimal:
    if sold <= 0:
        return ZERO
    return spent / sold * HUNDRED


@dataclass
class Figures:
    estimated_days: Decimal
    spent_days: Decimal
    remaining_days: Decimal
    forecast_days: Decimal
    gap_percent: Optional[Decimal]
    advancement_percent: Decimal

    @classmethod
    def from_parts(cls, estimated: Decimal, spent: Decimal, remaining: Decimal) -> "Figures":
        forecast = forecast_days(spent, remaining)
        return cls(
            estimated_days=estimated,
            spent_days=spent,
            remaining_days=remaining,
            forecast_days=forecast,
            gap_percent=gap_percent(estimated, forecast),
            advancement_percent=advancement_percent(estimated, spent),
        )

    @classmethod
    def total(cls, parts: list["Figures"]) -> "Figures":
        return cls.from_parts(
            sum((p.estimated_days for p in parts), ZERO),
            sum((p.spent_days for p in parts), ZERO),
            sum((p.remaining_days for p in parts), ZERO),
        )

    def to_dict(self, places: int = 2) -> dict:
        def _round(value):
            return None if value is None else round(float(value), places)

        return {
            "estimated_days": _round(self.estimated_days),
            "spent_days": _round(self.spent_days),
            "remaining_days": _round(self.remaining_days),
            "forecast_days": _round(self.forecast_days),
            "gap_percent": _round(self.gap_percent),
            "advancement_percent": _round(self.advancement_percent),
        }


def task_figures(arena: TaskArena, task_id: int, ledger_totals: Mapping[int, Decimal],
                 daily_hours=DEFAULT_DAILY_WORK_HOURS) -> Figures:
    return Figures.from_parts(
        estimated_days(arena, task_id),
        spent_days(arena, task_id, ledger_totals, daily_hours),
        remaining_days(arena.node(task_id), daily_hours),
    )


def container_figures(arena: TaskArena, stage_id: Optional[int], ledger_totals: Mapping[int, Decimal],
                      daily_hours=DEFAULT_DAILY_WORK_HOURS) -> Figures:
    """Totals over the top-level tasks of one stage (None: the unstaged group)."""
    return Figures.total([
        task_figures(arena, node.id, ledger_totals, daily_hours)
        for node in arena.roots(stage_id)
    ])


def project_figures(arena: TaskArena, ledger_totals: Mapping[int, Decimal],
                    daily_hours=DEFAULT_DAILY_WORK_HOURS) -> Figures:
    return Figures.total([
        container_figures(arena, stage_id, ledger_totals, daily_hours)
        for stage_id in arena.stage_ids()
    ])


# -----------------------------------------------------------------------------
# Completion
# -----------------------------------------------------------------------------

STATUS_DONE = "done"


def subtask_counts(arena: TaskArena, task_id: int) -> tuple[int, int]:
    """(all descendants, descendants that are done)."""
    total = completed = 0
    for node in arena.descendants(task_id):
        total += 1
        if node.status == STATUS_DONE:
            completed += 1
    return total, completed


def completion_percent(completed: int, total: int) -> Optional[Decimal]:
    if total == 0:
        return None
    return Decimal(completed) / Decimal(total) * HUNDRED


def is_complete_with_subtasks(arena: TaskArena, task_id: int) -> bool:
    """The task and every task below it are done."""
    if arena.node(task_id).status != STATUS_DONE:
        return False
    return all(node.status == STATUS_DONE for node in arena.descendants(task_id))


def group_completion(arena: TaskArena, stage_id: Optional[int]) -> dict:
    """Top-level task counts of one stage (None: the unstaged group)."""
    roots = arena.roots(stage_id)
    completed = sum(1 for node in roots if node.status == STATUS_DONE)
    rate = completion_percent(completed, len(roots))
    return {
        "task_count": len(roots),
        "completed_task_count": completed,
        "completion_rate": round(float(rate), 2) if rate is not None else 0.0,
    }


# -----------------------------------------------------------------------------
# Read model
# -----------------------------------------------------------------------------

def ledger_totals_for_project(project_id: int) -> dict[int, Decimal]:
    """Total logged hours per task (all users) for one project."""
    rows = (
        db.session.query(TimesheetEntry.task_id, func.sum(TimesheetEntry.hours))
        .join(Task, Task.id == TimesheetEntry.task_id)
        .filter(Task.project_id == project_id)
        .group_by(TimesheetEntry.task_id)
        .all()
    )
    return {task_id: to_decimal(total) for task_id, total in rows}


def _task_tree_dict(arena: TaskArena, node: TaskNode, ledger_totals, daily_hours) -> dict:
    own_total = to_decimal(ledger_totals.get(node.id))
    total_subtasks, completed_subtasks = subtask_counts(arena, node.id)
    completion = completion_percent(completed_subtasks, total_subtasks)
    return {
        "id": node.id,
        "name": node.name,
        "status": node.status,
        "stage_id": node.stage_id,
        "parent_task_id": node.parent_task_id,
        "display_order": node.display_order,
        "sold_days": float(to_decimal(node.sold_days)),
        "remaining_hours": float(node.remaining_hours) if node.remaining_hours is not None else None,
        "total_hours": float(own_total),
        "remaining_stale": staleness_service.is_remaining_stale(
            node.remaining_hours, node.last_remaining_update_total, own_total,
        ),
        "total_subtasks": total_subtasks,
        "completed_subtasks": completed_subtasks,
        "completion_percentage": round(float(completion), 2) if completion is not None else None,
        "complete_with_subtasks": is_complete_with_subtasks(arena, node.id),
        "figures": task_figures(arena, node.id, ledger_totals, daily_hours).to_dict(),
        "subtasks": [
            _task_tree_dict(arena, child, ledger_totals, daily_hours)
            for child in arena.subtasks(node.id)
        ],
    }


def project_tree(project_id: int, daily_hours=None) -> dict:
    """
    Stages in order, each with its nested tasks and figures, the unstaged
    group, and project totals.
    """
    divisor = _divisor(daily_hours) if daily_hours is not None else resolve_daily_hours()
    arena = load_project_arena(project_id)
    ledger_totals = ledger_totals_for_project(project_id)
    stages: list[Stage] = list_stages(project_id)

    stage_dicts = []
    for stage in stages:
        payload = stage.to_dict()
        payload["tasks"] = [
            _task_tree_dict(arena, node, ledger_totals, divisor) for node in arena.roots(stage.id)
        ]
        payload["figures"] = container_figures(arena, stage.id, ledger_totals, divisor).to_dict()
        payload.update(group_completion(arena, stage.id))
        stage_dicts.append(payload)

    return {
        "project_id": project_id,
        "daily_hours": float(divisor),
        "stages": stage_dicts,
        "unstaged": {
            "tasks": [_task_tree_dict(arena, node, ledger_totals, divisor) for node in arena.roots(None)],
            "figures": container_figures(arena, None, ledger_totals, divisor).to_dict(),
            **group_completion(arena, None),
        },
        "figures": project_figures(arena, ledger_totals, divisor).to_dict(),
    }
