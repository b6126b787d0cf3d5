from __future__ import annotations

from ..extensions import db
from planner.time_utils import to_iso_date, to_utc_z


class TimesheetEntry(db.Model):
    """
    Hours one user spent on one task on one day.

    A timesheet grid cell maps to zero or one entry: (user_id, task_id, date)
    is unique and a cell set to 0 hours is deleted, never stored.
    Entries become immutable while a TimesheetLock covers their month.
    """
    __tablename__ = "timesheet_entries"
    __table_args__ = (
        db.UniqueConstraint("user_id", "task_id", "date", name="uq_timesheet_entries_user_task_date"),
        db.Index("ix_timesheet_entries_user_date", "user_id", "date"),
        db.CheckConstraint("hours > 0 AND hours <= 24", name="ck_timesheet_entries_hours"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    hours = db.Column(db.Numeric(5, 2), nullable=False)
    description = db.Column(db.Text, nullable=True)
    entered_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    user = db.relationship("User", foreign_keys=[user_id])
    entered_by_user = db.relationship("User", foreign_keys=[entered_by])
    task = db.relationship(
        "Task",
        backref=db.backref("timesheet_entries", lazy=True, cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "task_id": self.task_id,
            "date": to_iso_date(self.date),
            "hours": float(self.hours),
            "description": self.description,
            "entered_by": self.entered_by,
            "entered_by_username": self.entered_by_user.username if self.entered_by_user else None,
        }


class TimesheetLock(db.Model):
    """
    Freezes timesheet entries of one month.

    project_id NULL is a global lock spanning every project. Databases treat
    NULLs as distinct in unique constraints, so the global case has its own
    partial unique index on (year, month).
    """
    __tablename__ = "timesheet_locks"
    __table_args__ = (
        db.UniqueConstraint("project_id", "year", "month", name="uq_timesheet_locks_project_year_month"),
        db.Index("ix_timesheet_locks_year_month", "year", "month"),
        db.Index(
            "uq_timesheet_locks_global_year_month",
            "year",
            "month",
            unique=True,
            sqlite_where=db.text("project_id IS NULL"),
            postgresql_where=db.text("project_id IS NULL"),
        ),
        db.CheckConstraint("month >= 1 AND month <= 12", name="ck_timesheet_locks_month"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=True, index=True)
    year = db.Column(db.Integer, nullable=False)
    month = db.Column(db.Integer, nullable=False)
    locked_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "year": self.year,
            "month": self.month,
            "locked_by": self.locked_by,
            "locked_at": to_utc_z(self.locked_at),
        }
