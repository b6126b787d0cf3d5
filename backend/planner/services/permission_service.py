# Overview: Authorization rules for tree edits, ledger edits and month locks.

"""
Authorization (never authentication)

WHY: The identity collaborator tells us who is calling; this module decides
what that caller may touch. Every rule fails closed.

RULES:
- Timesheet entries: the owning user, any administrator, or the manager of
  the entry's project.
- Locks: global locks are administrator-only; project locks are open to
  administrators and that project's manager.
- Tree edits: administrators, the project's manager and project members.
- Viewing another user's timesheet: administrators see everyone, project
  managers see the members of projects they manage, actors see themselves.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Project, ProjectUser, User
from ..validation import ForbiddenError, NotFoundError


logger = logging.getLogger(__name__)


class PermissionDeniedError(ForbiddenError):
    """Raised when user lacks the right to perform an operation."""
    pass


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if not user or not user.is_active:
        raise NotFoundError(f"User {user_id} not found")
    return user


def get_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id) if project_id is not None else None
    if not project:
        raise NotFoundError(f"Project {project_id} not found")
    return project


def manages_project(user: User, project: Project) -> bool:
    return project is not None and project.project_manager_id == user.id


def is_project_member(user: User, project: Project) -> bool:
    return db.session.query(ProjectUser.id).filter_by(
        project_id=project.id,
        user_id=user.id,
    ).first() is not None


def can_edit_timesheet_of(actor: User, owner_user_id: int, project: Project) -> bool:
    if actor.id == owner_user_id:
        return True
    if actor.is_administrator:
        return True
    return manages_project(actor, project)


def require_timesheet_editor(actor: User, owner_user_id: int, project: Project) -> None:
    if not can_edit_timesheet_of(actor, owner_user_id, project):
        logger.warning(
            "Timesheet edit denied: user %s on entries of user %s (project %s)",
            actor.id, owner_user_id, project.id,
        )
        raise PermissionDeniedError("Not allowed to edit this user's timesheet")


def can_manage_lock(actor: User, project: Project | None) -> bool:
    if actor.is_administrator:
        return True
    if project is None:
        return False
    return manages_project(actor, project)


def require_lock_manager(actor: User, project: Project | None) -> None:
    if not can_manage_lock(actor, project):
        scope = "global" if project is None else f"project {project.id}"
        logger.warning("Lock management denied: user %s on %s lock", actor.id, scope)
        raise PermissionDeniedError(
            "Only administrators can manage global locks"
            if project is None
            else "Only administrators or the project manager can manage this lock"
        )


def can_edit_project(actor: User, project: Project) -> bool:
    if actor.is_administrator or manages_project(actor, project):
        return True
    return is_project_member(actor, project)


def require_project_editor(actor: User, project: Project) -> None:
    if not can_edit_project(actor, project):
        raise PermissionDeniedError("Not a member of this project")


def related_project_ids(user: User) -> list[int]:
    """Projects the user manages or belongs to."""
    managed = {p.id for p in db.session.query(Project.id).filter_by(project_manager_id=user.id)}
    member = {m.project_id for m in db.session.query(ProjectUser.project_id).filter_by(user_id=user.id)}
    return sorted(managed | member)


def viewable_users(viewer: User) -> list[User]:
    """Users whose timesheet the viewer may open, viewer first."""
    if viewer.is_administrator:
        users = db.session.query(User).filter_by(is_active=True).order_by(User.username).all()
        return [viewer] + [u for u in users if u.id != viewer.id]

    if viewer.is_project_manager:
        managed_ids = [p.id for p in db.session.query(Project.id).filter_by(project_manager_id=viewer.id)]
        members: list[User] = []
        if managed_ids:
            members = (
                db.session.query(User)
                .join(ProjectUser, ProjectUser.user_id == User.id)
                .filter(ProjectUser.project_id.in_(managed_ids), User.is_active.is_(True))
                .order_by(User.username)
                .distinct()
                .all()
            )
        return [viewer] + [u for u in members if u.id != viewer.id]

    return [viewer]


def require_can_view_user(viewer: User, user_id: int) -> None:
    if viewer.id == user_id:
        return
    if not any(u.id == user_id for u in viewable_users(viewer)):
        raise PermissionDeniedError("Not allowed to view this user's timesheet")
