"""
Pytest fixtures for planner backend tests.

Provides test database setup, users of each type, a project with members,
and a test client.
"""

from decimal import Decimal

import pytest
from planner import create_app
from planner.extensions import db
from planner.models import Project, ProjectUser, Stage, Task, TimesheetEntry, User


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_DAILY_WORK_HOURS': 8,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_user(db_session, username, user_type, daily_work_hours=None):
    user = User(
        username=username,
        email=f"{username}@planner.test",
        user_type=user_type,
        daily_work_hours=daily_work_hours,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "admin", "administrator")


@pytest.fixture(scope='function')
def manager(db_session):
    return _make_user(db_session, "manager", "project_manager")


@pytest.fixture(scope='function')
def actor(db_session):
    return _make_user(db_session, "actor", "actor")


@pytest.fixture(scope='function')
def other_actor(db_session):
    """An actor with no membership on the test project."""
    return _make_user(db_session, "outsider", "actor")


@pytest.fixture(scope='function')
def project(db_session, manager, actor):
    """Project managed by `manager` with `actor` as member."""
    project = Project(name="Website", project_manager_id=manager.id, status="in_progress")
    db_session.add(project)
    db_session.flush()
    db_session.add(ProjectUser(project_id=project.id, user_id=actor.id, role="developer"))
    db_session.commit()
    return project


@pytest.fixture(scope='function')
def other_project(db_session, admin):
    project = Project(name="Intranet", project_manager_id=admin.id, status="in_progress")
    db_session.add(project)
    db_session.commit()
    return project


@pytest.fixture(scope='function')
def make_stage(db_session, project):
    def _make(name, order, project_id=None):
        stage = Stage(project_id=project_id or project.id, name=name, order=order)
        db_session.add(stage)
        db_session.commit()
        return stage
    return _make


@pytest.fixture(scope='function')
def make_task(db_session, project):
    """Insert a task row directly, bypassing the service layer."""
    def _make(name, *, stage=None, parent=None, order=0, sold_days="0", remaining_hours=None,
              last_remaining_update_total=None, project_id=None, status="todo"):
        task = Task(
            project_id=project_id or project.id,
            stage_id=stage.id if stage is not None else None,
            parent_task_id=parent.id if parent is not None else None,
            name=name,
            display_order=order,
            status=status,
            sold_days=Decimal(sold_days),
            remaining_hours=Decimal(remaining_hours) if remaining_hours is not None else None,
            last_remaining_update_total=(
                Decimal(last_remaining_update_total) if last_remaining_update_total is not None else None
            ),
        )
        db_session.add(task)
        db_session.commit()
        return task
    return _make


@pytest.fixture(scope='function')
def log_hours(db_session):
    """Insert a timesheet entry directly (no lock or permission checks)."""
    def _log(user, task, day, hours):
        entry = TimesheetEntry(
            user_id=user.id,
            task_id=task.id,
            date=day,
            hours=Decimal(str(hours)),
            entered_by=user.id,
        )
        db_session.add(entry)
        db_session.commit()
        return entry
    return _log


def _auth_headers(user):
    return {"X-User-Id": str(user.id)}


@pytest.fixture(scope='function')
def admin_headers(admin):
    return _auth_headers(admin)


@pytest.fixture(scope='function')
def manager_headers(manager):
    return _auth_headers(manager)


@pytest.fixture(scope='function')
def actor_headers(actor):
    return _auth_headers(actor)


@pytest.fixture(scope='function')
def outsider_headers(other_actor):
    return _auth_headers(other_actor)
