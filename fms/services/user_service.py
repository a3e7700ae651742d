"""
User resolution for the engine.

Authentication is handled outside the engine; these helpers only map ids
to active User rows and pick the acting assignee of a step.
"""

import logging

from sqlalchemy import func

from fms.core.exceptions import ConflictError, NotFoundError, ValidationError
from fms.models import db
from fms.models.user import USER_ROLES, User

logger = logging.getLogger(__name__)


def resolve_user(user_id):
    """Return the active User for ``user_id``, or None."""
    if user_id is None:
        return None
    try:
        user = db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None
    if user is None or not user.is_active:
        return None
    return user


def require_user(user_id, field="user_id"):
    """Like resolve_user but raise ValidationError naming ``field``."""
    user = resolve_user(user_id)
    if user is None:
        raise ValidationError(
            f"{field} does not reference an active user",
            details={field: user_id},
        )
    return user


def resolve_assignee(step):
    """Pick the one acting assignee of a step: first active eligible user."""
    for user in step.assignees:
        if user.is_active:
            return user
    return None


def get_user(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def create_user(username, email=None, role="user"):
    username = (username or "").strip()
    if not username:
        raise ValidationError("username is required", details={"username": "required"})
    if role not in USER_ROLES:
        raise ValidationError(
            f"Invalid role '{role}'", details={"role": f"must be one of {sorted(USER_ROLES)}"},
        )
    exists = db.session.query(func.count(User.id)).filter(User.username == username).scalar()
    if exists:
        raise ConflictError("User", "username", username)
    user = User(username=username, email=email, role=role)
    db.session.add(user)
    db.session.commit()
    logger.info("User created id=%s username=%s role=%s", user.id, user.username, role)
    return user
