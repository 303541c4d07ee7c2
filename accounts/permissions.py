"""
Resolved actor and role checks used by the gradebook services.

Services never look at ``request``; views turn ``request.user`` into an
``Actor`` and pass it down.
"""
from dataclasses import dataclass

from django.core.exceptions import PermissionDenied

from .models import User

REPORT_MANAGER_ROLES = frozenset({User.Role.SCHOOL_ADMIN, User.Role.HEAD_TEACHER})
SETTINGS_MANAGER_ROLES = frozenset({User.Role.SCHOOL_ADMIN})


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str
    school_id: int | None

    @classmethod
    def from_user(cls, user):
        role = User.Role.SUPER_ADMIN if user.is_superuser else user.role
        return cls(user_id=user.pk, role=role, school_id=user.school_id)

    @property
    def is_super_admin(self):
        return self.role == User.Role.SUPER_ADMIN


def require_role(actor, school_id, roles):
    """
    Raise PermissionDenied unless the actor holds one of ``roles`` in the school.

    SUPER_ADMIN passes for every school.
    """
    if actor is None:
        raise PermissionDenied('Please sign in.')
    if actor.is_super_admin:
        return actor
    if actor.role not in roles:
        raise PermissionDenied('Admin access required.')
    if actor.school_id != school_id:
        raise PermissionDenied('You do not belong to this school.')
    return actor


def require_report_manager(actor, school_id):
    """Report generation and publication: SCHOOL_ADMIN or HEAD_TEACHER."""
    return require_role(actor, school_id, REPORT_MANAGER_ROLES)


def require_settings_manager(actor, school_id):
    """Results settings: SCHOOL_ADMIN only."""
    return require_role(actor, school_id, SETTINGS_MANAGER_ROLES)
