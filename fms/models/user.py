"""
User directory — the identities that templates assign work to and that
approve objections.

Authentication lives outside the engine; this table is only the lookup the
engine needs to resolve assignees and approvers.
"""

from datetime import datetime, timezone

from fms.models import db

USER_ROLES = {"admin", "user"}
USER_STATUSES = {"active", "inactive"}


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), nullable=False, unique=True)
    email = db.Column(db.String(200), nullable=True)
    role = db.Column(db.String(20), nullable=False, default="user")  # admin | user
    status = db.Column(db.String(20), nullable=False, default="active")  # active | inactive
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("role IN ('admin','user')", name="ck_user_role"),
        db.CheckConstraint("status IN ('active','inactive')", name="ck_user_status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "status": self.status,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.username}>"
