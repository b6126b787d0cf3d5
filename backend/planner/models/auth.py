from __future__ import annotations

from ..extensions import db
from planner.time_utils import to_utc_z


USER_TYPE_ADMINISTRATOR = "administrator"
USER_TYPE_PROJECT_MANAGER = "project_manager"
USER_TYPE_ACTOR = "actor"

USER_TYPES = (USER_TYPE_ADMINISTRATOR, USER_TYPE_PROJECT_MANAGER, USER_TYPE_ACTOR)


class User(db.Model):
    """
    Local projection of the identity collaborator's users.

    Authentication is handled upstream; this row only carries what
    authorization and effort conversion need (user_type, daily_work_hours).
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_user_type", "user_type"),
        db.CheckConstraint(
            "user_type IN ('administrator', 'project_manager', 'actor')",
            name="ck_users_user_type",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(255), nullable=False, unique=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    first_name = db.Column(db.String(255), nullable=True)
    last_name = db.Column(db.String(255), nullable=True)

    user_type = db.Column(db.String(32), nullable=False, default=USER_TYPE_ACTOR)

    # Hours in one working day; NULL falls back to DEFAULT_DAILY_WORK_HOURS
    daily_work_hours = db.Column(db.Numeric(4, 2), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_administrator(self) -> bool:
        return self.user_type == USER_TYPE_ADMINISTRATOR

    @property
    def is_project_manager(self) -> bool:
        return self.user_type == USER_TYPE_PROJECT_MANAGER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "user_type": self.user_type,
            "daily_work_hours": float(self.daily_work_hours) if self.daily_work_hours is not None else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.username}>"
