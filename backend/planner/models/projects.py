from __future__ import annotations

from ..extensions import db
from planner.time_utils import to_iso_date, to_utc_z


def _num(value):
    return float(value) if value is not None else None


class Project(db.Model):
    """
    A client engagement broken down into stages and tasks.

    Only the fields the planning core reads are modelled here; client
    management lives with the surrounding application.
    """
    __tablename__ = "projects"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('created', 'in_progress', 'frozen', 'closed')",
            name="ck_projects_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    project_manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False, default="created", index=True)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    description = db.Column(db.Text, nullable=True)
    budget = db.Column(db.Numeric(15, 2), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    project_manager = db.relationship("User", foreign_keys=[project_manager_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "project_manager_id": self.project_manager_id,
            "status": self.status,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "description": self.description,
            "budget": _num(self.budget),
            "created_at": to_utc_z(self.created_at),
        }


class ProjectUser(db.Model):
    """Project membership (N-N between projects and users)."""
    __tablename__ = "project_users"
    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_users_project_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    role = db.Column(db.String(100), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    project = db.relationship("Project", backref=db.backref("memberships", lazy=True))
    user = db.relationship("User", backref=db.backref("project_memberships", lazy=True))


class Stage(db.Model):
    """
    Ordered phase of a project grouping its top-level tasks.

    INVARIANT: order is unique within a project. Deleting a stage is refused
    while any task still references it.
    """
    __tablename__ = "stages"
    __table_args__ = (
        db.UniqueConstraint("project_id", "stage_order", name="uq_stages_project_order"),
        db.Index("ix_stages_project_order", "project_id", "stage_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    name = db.Column("stage_name", db.String(255), nullable=False)
    order = db.Column("stage_order", db.Integer, nullable=False, default=0)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    description = db.Column(db.Text, nullable=True)
    is_completed = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    project = db.relationship("Project", backref=db.backref("stages", lazy=True, order_by="Stage.order"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "order": self.order,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "description": self.description,
            "is_completed": self.is_completed,
        }


class Task(db.Model):
    """
    A unit of work. A subtask is a task whose parent_task_id is set.

    INVARIANTS:
    - subtasks never carry a stage_id; their stage is the nearest ancestor's
    - parent_task_id never forms a cycle
    - display_order is unique among siblings, i.e. tasks sharing
      (project_id, stage_id, parent_task_id)

    Deleting a task deletes its whole subtree and the subtree's ledger entries.
    """
    __tablename__ = "tasks"
    __table_args__ = (
        db.Index("ix_tasks_sibling_group", "project_id", "stage_id", "parent_task_id", "display_order"),
        db.CheckConstraint("sold_days >= 0", name="ck_tasks_sold_days"),
        db.CheckConstraint("priority IN ('low', 'medium', 'high', 'urgent')", name="ck_tasks_priority"),
        db.CheckConstraint(
            "status IN ('todo', 'in_progress', 'review', 'done', 'blocked')",
            name="ck_tasks_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    stage_id = db.Column(db.Integer, db.ForeignKey("stages.id"), nullable=True, index=True)
    parent_task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)

    name = db.Column("task_name", db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Quoted effort in days
    sold_days = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    responsible_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    priority = db.Column(db.String(16), nullable=False, default="medium")
    status = db.Column(db.String(16), nullable=False, default="todo", index=True)

    display_order = db.Column(db.Integer, nullable=False, default=0)

    start_date = db.Column(db.Date, nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Manual forward estimate, plus the ledger total at the time it was set
    remaining_hours = db.Column(db.Numeric(10, 2), nullable=True)
    last_remaining_update_total = db.Column(db.Numeric(12, 2), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    project = db.relationship("Project", backref=db.backref("tasks", lazy=True))
    stage = db.relationship("Stage", backref=db.backref("tasks", lazy="dynamic"))
    responsible = db.relationship("User", foreign_keys=[responsible_id])
    subtasks = db.relationship(
        "Task",
        backref=db.backref("parent_task", remote_side=[id]),
        lazy=True,
        cascade="all, delete",
        order_by="Task.display_order",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "stage_id": self.stage_id,
            "parent_task_id": self.parent_task_id,
            "name": self.name,
            "description": self.description,
            "sold_days": _num(self.sold_days),
            "responsible_id": self.responsible_id,
            "priority": self.priority,
            "status": self.status,
            "display_order": self.display_order,
            "start_date": to_iso_date(self.start_date),
            "due_date": to_iso_date(self.due_date),
            "completed_at": to_utc_z(self.completed_at),
            "remaining_hours": _num(self.remaining_hours),
            "last_remaining_update_total": _num(self.last_remaining_update_total),
        }

    def __repr__(self):
        return f"<Task {self.name}>"
