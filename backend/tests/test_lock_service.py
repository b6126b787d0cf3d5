"""
Lock manager tests.

Verifies:
- Global locks are administrator-only
- Project locks are open to administrators and the project's manager
- Duplicate locks conflict (global case included)
- Clearing a missing lock is NotFound
- Month and project scoping of lock lookups
"""

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from planner.extensions import db
from planner.models import TimesheetLock
from planner.services import lock_service
from planner.validation import ConflictError, ForbiddenError, NotFoundError, ValidationError


class TestSetLock:
    def test_admin_sets_global_lock(self, admin):
        lock = lock_service.set_lock(project_id=None, year=2026, month=3, locked_by=admin.id)

        assert lock.project_id is None
        assert lock.locked_by == admin.id
        assert lock.locked_at is not None

    def test_manager_cannot_set_global_lock(self, manager):
        with pytest.raises(ForbiddenError):
            lock_service.set_lock(project_id=None, year=2026, month=3, locked_by=manager.id)

    def test_manager_sets_own_project_lock(self, manager, project):
        lock = lock_service.set_lock(project_id=project.id, year=2026, month=3, locked_by=manager.id)
        assert lock.project_id == project.id

    def test_manager_cannot_lock_other_project(self, manager, other_project):
        with pytest.raises(ForbiddenError):
            lock_service.set_lock(project_id=other_project.id, year=2026, month=3, locked_by=manager.id)

    def test_actor_cannot_lock(self, actor, project):
        with pytest.raises(ForbiddenError):
            lock_service.set_lock(project_id=project.id, year=2026, month=3, locked_by=actor.id)

    @pytest.mark.parametrize("month", [0, 13, "march"])
    def test_invalid_month(self, admin, month):
        with pytest.raises(ValidationError):
            lock_service.set_lock(project_id=None, year=2026, month=month, locked_by=admin.id)

    def test_duplicate_global_lock_conflicts(self, admin):
        lock_service.set_lock(project_id=None, year=2026, month=3, locked_by=admin.id)

        with pytest.raises(ConflictError):
            lock_service.set_lock(project_id=None, year=2026, month=3, locked_by=admin.id)
        assert db.session.query(TimesheetLock).count() == 1

    def test_duplicate_project_lock_conflicts(self, admin, project):
        lock_service.set_lock(project_id=project.id, year=2026, month=3, locked_by=admin.id)

        with pytest.raises(ConflictError):
            lock_service.set_lock(project_id=project.id, year=2026, month=3, locked_by=admin.id)

    def test_global_and_project_locks_coexist(self, admin, project):
        lock_service.set_lock(project_id=None, year=2026, month=3, locked_by=admin.id)
        lock_service.set_lock(project_id=project.id, year=2026, month=3, locked_by=admin.id)

        assert db.session.query(TimesheetLock).count() == 2

    def test_unknown_project(self, admin):
        with pytest.raises(NotFoundError):
            lock_service.set_lock(project_id=9999, year=2026, month=3, locked_by=admin.id)


    def test_database_rejects_second_global_lock(self, db_session, admin):
        db_session.add(TimesheetLock(project_id=None, year=2026, month=3, locked_by=admin.id))
        db_session.commit()

        db_session.add(TimesheetLock(project_id=None, year=2026, month=3, locked_by=admin.id))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

        assert db.session.query(TimesheetLock).count() == 1


class TestClearLock:
    def test_clear(self, manager, project):
        lock_service.set_lock(project_id=project.id, year=2026, month=3, locked_by=manager.id)
        lock_service.clear_lock(project_id=project.id, year=2026, month=3, requested_by=manager.id)

        assert not lock_service.is_locked(project.id, date(2026, 3, 1))

    def test_clear_missing_lock(self, admin):
        with pytest.raises(NotFoundError):
            lock_service.clear_lock(project_id=None, year=2026, month=3, requested_by=admin.id)

    def test_clear_requires_same_rights(self, admin, manager):
        lock_service.set_lock(project_id=None, year=2026, month=3, locked_by=admin.id)

        with pytest.raises(ForbiddenError):
            lock_service.clear_lock(project_id=None, year=2026, month=3, requested_by=manager.id)


class TestLookups:
    def test_is_locked_scoping(self, admin, project, other_project):
        lock_service.set_lock(project_id=project.id, year=2026, month=3, locked_by=admin.id)

        assert lock_service.is_locked(project.id, date(2026, 3, 31))
        assert not lock_service.is_locked(project.id, date(2026, 4, 1))
        assert not lock_service.is_locked(project.id, date(2025, 3, 1))
        assert not lock_service.is_locked(other_project.id, date(2026, 3, 1))

    def test_project_lock_preferred_over_global(self, admin, project):
        lock_service.set_lock(project_id=None, year=2026, month=3, locked_by=admin.id)
        lock_service.set_lock(project_id=project.id, year=2026, month=3, locked_by=admin.id)

        covering = lock_service.find_covering_lock(project.id, date(2026, 3, 5))
        assert covering.project_id == project.id

    def test_list_locks_filters(self, admin, project, other_project):
        lock_service.set_lock(project_id=None, year=2026, month=3, locked_by=admin.id)
        lock_service.set_lock(project_id=project.id, year=2026, month=3, locked_by=admin.id)
        lock_service.set_lock(project_id=other_project.id, year=2026, month=3, locked_by=admin.id)
        lock_service.set_lock(project_id=project.id, year=2026, month=4, locked_by=admin.id)

        march = lock_service.list_locks(year=2026, month=3, project_ids=[project.id])
        assert {lock.project_id for lock in march} == {None, project.id}
        assert len(lock_service.list_locks()) == 4
        assert len(lock_service.list_locks(month=4)) == 1
