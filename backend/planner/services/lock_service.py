# Overview: Month locks gating every timesheet ledger mutation.

"""
Lock Manager

A TimesheetLock row (project or global, year, month) is the only durable
mutual-exclusion primitive of the planner: while it exists, no entry dated
in that month may be created, changed or removed for the locked project
(or for any project, when global).
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import TimesheetLock
from ..validation import ConflictError, LockedError, NotFoundError, require_year_month
from . import permission_service
from .concurrency import lock_for_update
from planner.time_utils import utcnow


logger = logging.getLogger(__name__)


def _find_lock(project_id: int | None, year: int, month: int) -> TimesheetLock | None:
    query = db.session.query(TimesheetLock).filter_by(year=year, month=month)
    if project_id is None:
        query = query.filter(TimesheetLock.project_id.is_(None))
    else:
        query = query.filter(TimesheetLock.project_id == project_id)
    return query.first()


def find_covering_lock(project_id: int, day: date, *, for_update: bool = False) -> TimesheetLock | None:
    """The project lock or global lock covering `day`, if any (project lock wins)."""
    query = db.session.query(TimesheetLock).filter(
        TimesheetLock.year == day.year,
        TimesheetLock.month == day.month,
        or_(TimesheetLock.project_id == project_id, TimesheetLock.project_id.is_(None)),
    )
    if for_update:
        query = lock_for_update(query)
    candidates = query.all()
    if not candidates:
        return None
    candidates.sort(key=lambda lock: lock.project_id is None)
    return candidates[0]


def is_locked(project_id: int, day: date) -> bool:
    return find_covering_lock(project_id, day) is not None


def require_unlocked(project_id: int, day: date) -> None:
    """Raise LockedError if `day` is locked. Call inside the writing transaction."""
    lock = find_covering_lock(project_id, day, for_update=True)
    if lock is None:
        return
    scope = "globally" if lock.project_id is None else "for this project"
    raise LockedError(f"Timesheet for {day.year:04d}-{day.month:02d} is locked {scope}")


def set_lock(*, project_id: int | None, year, month, locked_by: int) -> TimesheetLock:
    year, month = require_year_month(year, month)
    actor = permission_service.get_user(locked_by)
    project = permission_service.get_project(project_id) if project_id is not None else None
    permission_service.require_lock_manager(actor, project)

    if _find_lock(project_id, year, month):
        raise ConflictError(f"{year:04d}-{month:02d} is already locked")

    lock = TimesheetLock(
        project_id=project_id,
        year=year,
        month=month,
        locked_by=actor.id,
        locked_at=utcnow(),
    )
    db.session.add(lock)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"{year:04d}-{month:02d} is already locked")

    logger.info(
        "Timesheet lock set: project=%s period=%04d-%02d by user %s",
        project_id if project_id is not None else "global", year, month, actor.id,
    )
    return lock


def clear_lock(*, project_id: int | None, year, month, requested_by: int) -> None:
    year, month = require_year_month(year, month)
    actor = permission_service.get_user(requested_by)
    project = permission_service.get_project(project_id) if project_id is not None else None
    permission_service.require_lock_manager(actor, project)

    lock = _find_lock(project_id, year, month)
    if not lock:
        raise NotFoundError(f"No lock for {year:04d}-{month:02d}")

    db.session.delete(lock)
    db.session.commit()

    logger.info(
        "Timesheet lock cleared: project=%s period=%04d-%02d by user %s",
        project_id if project_id is not None else "global", year, month, actor.id,
    )


def list_locks(*, year: int | None = None, month: int | None = None,
               project_ids: Iterable[int] | None = None) -> list[TimesheetLock]:
    """Locks matching the period; with project_ids, only those projects plus global locks."""
    query = db.session.query(TimesheetLock)
    if year is not None:
        query = query.filter(TimesheetLock.year == year)
    if month is not None:
        query = query.filter(TimesheetLock.month == month)
    if project_ids is not None:
        ids = list(project_ids)
        query = query.filter(or_(TimesheetLock.project_id.is_(None), TimesheetLock.project_id.in_(ids)))
    return query.order_by(TimesheetLock.year, TimesheetLock.month, TimesheetLock.id).all()
