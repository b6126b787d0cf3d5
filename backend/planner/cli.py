# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/planner/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with type, daily hours and active status.
# - python -m flask users create --username alice --email alice@example.com --user-type project_manager --daily-hours 7.5
#   Create a user projection (identity itself lives upstream).
#
# Project bootstrap:
# - python -m flask projects create --name "Website" --manager-id 2
#   Create a project managed by the given user.
# - python -m flask projects add-member --project-id 1 --user-id 3 --role developer
#   Add a user to a project.
#
# Timesheet locks:
# - python -m flask locks list --year 2026 --month 3
#   List locks (optionally for one period).
# - python -m flask locks set --year 2026 --month 3 [--project-id 1] --as-user 1
#   Lock a month, globally or for one project, acting as the given user.
# - python -m flask locks clear --year 2026 --month 3 [--project-id 1] --as-user 1
#   Remove a lock, acting as the given user.
#
# Maintenance:
# - python -m flask tasks compact --project-id 1
#   Renumber the stage list and every sibling group of a project to 0..n-1.

from decimal import Decimal, InvalidOperation

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Project, ProjectUser, User
from .models.auth import USER_TYPES, USER_TYPE_ACTOR
from .services import lock_service, reorder_service
from .validation import PlannerError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the model metadata."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask users create' to add users.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--user-type', type=click.Choice(USER_TYPES), default=USER_TYPE_ACTOR, show_default=True, help='User type')
@click.option('--first-name', help='First name')
@click.option('--last-name', help='Last name')
@click.option('--daily-hours', help='Hours in one working day (default applies when omitted)')
@with_appcontext
def create_user_cli(username, email, user_type, first_name, last_name, daily_hours):
    """Create a user projection."""
    hours = None
    if daily_hours is not None:
        try:
            hours = Decimal(daily_hours)
        except InvalidOperation:
            raise click.BadParameter("must be a number", param_hint="--daily-hours")
        if hours <= 0:
            raise click.BadParameter("must be > 0", param_hint="--daily-hours")

    if db.session.query(User).filter((User.username == username) | (User.email == email)).first():
        click.echo(f"FAIL A user named '{username}' or with email '{email}' already exists")
        return

    user = User(
        username=username,
        email=email,
        user_type=user_type,
        first_name=first_name,
        last_name=last_name,
        daily_work_hours=hours,
    )
    db.session.add(user)
    db.session.commit()

    click.echo(f"PASS Created user: {username} ({email}) as {user_type} (ID: {user.id})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Type':<16} {'Hours/day':<10} {'Active'}")
    click.echo("="*90)

    for user in users:
        hours = f"{user.daily_work_hours}" if user.daily_work_hours is not None else "default"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {user.user_type:<16} {hours:<10} {active_str}")

    click.echo("="*90 + "\n")


@click.group('projects')
def projects_group():
    """Project bootstrap commands."""


@projects_group.command('create')
@click.option('--name', required=True, help='Project name')
@click.option('--manager-id', type=int, required=True, help='Project manager user ID')
@with_appcontext
def create_project_cli(name, manager_id):
    """Create a project."""
    manager = db.session.get(User, manager_id)
    if not manager:
        click.echo(f"FAIL User ID {manager_id} not found")
        return

    project = Project(name=name, project_manager_id=manager.id)
    db.session.add(project)
    db.session.commit()
    click.echo(f"PASS Created project: {name} (ID: {project.id}) managed by {manager.username}")


@projects_group.command('add-member')
@click.option('--project-id', type=int, required=True, help='Project ID')
@click.option('--user-id', type=int, required=True, help='User ID')
@click.option('--role', help='Role on the project')
@with_appcontext
def add_member_cli(project_id, user_id, role):
    """Add a user to a project."""
    if not db.session.get(Project, project_id):
        click.echo(f"FAIL Project ID {project_id} not found")
        return
    if not db.session.get(User, user_id):
        click.echo(f"FAIL User ID {user_id} not found")
        return
    if db.session.query(ProjectUser).filter_by(project_id=project_id, user_id=user_id).first():
        click.echo(f"SKIP User {user_id} is already a member of project {project_id}")
        return

    db.session.add(ProjectUser(project_id=project_id, user_id=user_id, role=role))
    db.session.commit()
    click.echo(f"PASS Added user {user_id} to project {project_id}")


@click.group('locks')
def locks_group():
    """Timesheet month lock commands."""


@locks_group.command('list')
@click.option('--year', type=int, help='Filter by year')
@click.option('--month', type=click.IntRange(1, 12), help='Filter by month')
@with_appcontext
def list_locks_cli(year, month):
    """List timesheet locks."""
    locks = lock_service.list_locks(year=year, month=month)
    if not locks:
        click.echo("No locks found.")
        return

    for lock in locks:
        scope = "global" if lock.project_id is None else f"project {lock.project_id}"
        click.echo(f"{lock.year:04d}-{lock.month:02d}  {scope:<14} locked by {lock.locked_by} at {lock.locked_at}")


@locks_group.command('set')
@click.option('--year', type=int, required=True, help='Year')
@click.option('--month', type=int, required=True, help='Month (1-12)')
@click.option('--project-id', type=int, help='Project ID (omit for a global lock)')
@click.option('--as-user', 'as_user', type=int, required=True, help='Acting user ID')
@with_appcontext
def set_lock_cli(year, month, project_id, as_user):
    """Lock a month."""
    try:
        lock = lock_service.set_lock(project_id=project_id, year=year, month=month, locked_by=as_user)
    except PlannerError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    scope = "globally" if lock.project_id is None else f"for project {lock.project_id}"
    click.echo(f"PASS Locked {lock.year:04d}-{lock.month:02d} {scope}")


@locks_group.command('clear')
@click.option('--year', type=int, required=True, help='Year')
@click.option('--month', type=int, required=True, help='Month (1-12)')
@click.option('--project-id', type=int, help='Project ID (omit for the global lock)')
@click.option('--as-user', 'as_user', type=int, required=True, help='Acting user ID')
@with_appcontext
def clear_lock_cli(year, month, project_id, as_user):
    """Remove a month lock."""
    try:
        lock_service.clear_lock(project_id=project_id, year=year, month=month, requested_by=as_user)
    except PlannerError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Unlocked {year:04d}-{month:02d}")


@click.group('tasks')
def tasks_group():
    """Task tree maintenance commands."""


@tasks_group.command('compact')
@click.option('--project-id', type=int, required=True, help='Project ID')
@with_appcontext
def compact_tasks_cli(project_id):
    """Renumber every sibling group of a project to 0..n-1."""
    if not db.session.get(Project, project_id):
        click.echo(f"FAIL Project ID {project_id} not found")
        return
    groups = reorder_service.compact_project(project_id)
    click.echo(f"PASS Compacted stage list and {groups} task group(s) of project {project_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(projects_group)
    app.cli.add_command(locks_group)
    app.cli.add_command(tasks_group)
