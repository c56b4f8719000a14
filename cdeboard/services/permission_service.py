"""
Permission Service: project-scoped role → permission lookup.

Evaluation is deny-by-default:
  - a user with no ProjectMember row in the project has no permissions
  - a membership grants exactly the permissions of its role

Services never query roles themselves; they receive a ``PermissionChecker``
(defaulting to ``has_project_permission``) and call ``ensure_permission``
before any mutating operation.
"""

import logging
from collections.abc import Callable

from cdeboard.core.exceptions import PermissionDeniedError
from cdeboard.models import db
from cdeboard.models.auth import ProjectMember

logger = logging.getLogger(__name__)

PermissionChecker = Callable[[int | None, int, str], bool]

_CONTRIBUTOR = frozenset({"read", "create", "update", "delete"})
_CDE_LEAD = _CONTRIBUTOR | {
    "lock_indicator", "unlock_indicator", "run_compliance_check",
    "create_remediation", "change_report_status", "override_flags",
}
_COORDINATOR = _CDE_LEAD | {"create_project"}

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "viewer": frozenset({"read"}),
    "contributor": _CONTRIBUTOR,
    "cde_lead": _CDE_LEAD,
    "coordinator": _COORDINATOR,
    "admin": _COORDINATOR | {"manage_templates", "manage_compliance_rules"},
}


def get_project_role(user_id: int | None, project_id: int) -> str | None:
    if user_id is None:
        return None
    member = (
        db.session.query(ProjectMember)
        .filter_by(project_id=project_id, user_id=user_id)
        .first()
    )
    return member.role if member else None


def has_project_permission(user_id: int | None, project_id: int, permission: str) -> bool:
    """Default PermissionChecker backed by ProjectMember roles."""
    role = get_project_role(user_id, project_id)
    if role is None:
        return False
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def ensure_permission(
    user_id: int | None,
    project_id: int,
    permission: str,
    checker: PermissionChecker | None = None,
) -> None:
    """Raise PermissionDeniedError unless *checker* grants *permission*."""
    checker = checker or has_project_permission
    if checker(user_id, project_id, permission):
        return
    logger.warning(
        "User %s denied: missing permission '%s'",
        user_id, permission,
        extra={"project_id": project_id, "user_id": user_id, "event_type": "permission_denied"},
    )
    raise PermissionDeniedError(permission, user_id=user_id, project_id=project_id)
