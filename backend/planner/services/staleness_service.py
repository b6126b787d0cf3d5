# Overview: Flags remaining-hours estimates that predate the latest ledger activity.

"""
Staleness Tracker

When someone records a remaining-hours estimate we snapshot the task's ledger
total next to it. Any later entry change moves the total away from that
snapshot and the estimate is shown as stale until it is re-entered.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import TimesheetEntry
from ..validation import coerce_hours
from . import permission_service
from .concurrency import atomic
from .tree_service import get_task


logger = logging.getLogger(__name__)


STALE_TOLERANCE = Decimal("0.01")


def _dec(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def is_remaining_stale(remaining_hours, last_remaining_update_total, current_total) -> bool:
    if remaining_hours is None:
        return False
    if last_remaining_update_total is None:
        return True
    current = _dec(current_total if current_total is not None else 0)
    return abs(current - _dec(last_remaining_update_total)) > STALE_TOLERANCE


def ledger_total(task_id: int) -> Decimal:
    """Hours logged on this task by every user."""
    total = db.session.query(func.sum(TimesheetEntry.hours)).filter(TimesheetEntry.task_id == task_id).scalar()
    return _dec(total) if total is not None else Decimal("0")


def set_remaining_hours(task_id: int, hours, requested_by: int):
    """
    Record a new remaining-hours figure (None clears it).

    The snapshot always moves to the current ledger total, which clears the
    stale flag.
    """
    hours = coerce_hours(hours, field="remaining_hours", allow_none=True)
    task = get_task(task_id)
    actor = permission_service.get_user(requested_by)
    permission_service.require_project_editor(actor, task.project)

    with atomic():
        task.remaining_hours = hours
        task.last_remaining_update_total = ledger_total(task.id)

    logger.info("Remaining hours of task %s set to %s by user %s", task.id, hours, actor.id)
    return task
