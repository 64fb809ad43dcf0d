"""
User Service — role management over the identity mirror, admin statistics.
"""

import logging

from sqlalchemy import func, select

from watermap.core.exceptions import NotFoundError, ValidationError
from watermap.models import db
from watermap.models.auth import REVIEWER_ROLES, ROLE_ADMIN, ROLES, User
from watermap.models.change_log import ChangeLog
from watermap.models.water_object import OBJECT_STATUSES, STATUS_PUBLISHED, WaterObject
from watermap.services import water_object_store as store
from watermap.services.water_object_lifecycle import require_actor, transaction

logger = logging.getLogger(__name__)


def list_users() -> list[dict]:
    """All mirrored users, newest first."""
    users = db.session.execute(
        select(User).order_by(User.created_at.desc(), User.id.desc())
    ).scalars()
    return [u.to_dict() for u in users]


def change_user_role(admin_id: int, user_id: int, role: str) -> dict:
    """
    Set *user_id*'s role.

    Raises:
        ValidationError: unknown role, or an admin demoting themselves.
        NotFoundError: no such user.
    """
    if role not in ROLES:
        raise ValidationError(
            "Invalid role", errors=[f"role must be one of: {', '.join(sorted(ROLES))}"],
        )
    require_actor(admin_id, "change_role", REVIEWER_ROLES)
    if admin_id == user_id and role != ROLE_ADMIN:
        raise ValidationError("Cannot change your own role")

    with transaction("change_role"):
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="User", resource_id=user_id)
        old_role = user.role
        user.role = role

    logger.info("User %s role %s -> %s by admin=%s", user_id, old_role, role, admin_id)
    return user.to_dict()


def get_stats() -> dict:
    """Counts for the admin dashboard."""
    by_status = {status: 0 for status in OBJECT_STATUSES}
    by_status.update(store.count_by_status())

    published_by_type = dict(db.session.execute(
        select(WaterObject.object_type, func.count(WaterObject.id))
        .where(WaterObject.status == STATUS_PUBLISHED)
        .group_by(WaterObject.object_type)
    ).all())

    users_by_role = {role: 0 for role in ROLES}
    users_by_role.update(dict(db.session.execute(
        select(User.role, func.count(User.id)).group_by(User.role)
    ).all()))

    return {
        "water_objects": {
            "by_status": by_status,
            "published_by_type": published_by_type,
            "total": sum(by_status.values()),
        },
        "users": {
            "by_role": users_by_role,
            "total": sum(users_by_role.values()),
        },
        "change_log_entries": db.session.execute(select(func.count(ChangeLog.id))).scalar_one(),
    }
