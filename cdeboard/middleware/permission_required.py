"""
Permission Decorators: JWT-aware RBAC decorators for project routes.

Usage:
    @bp.route("/projects/<int:project_id>/decision-support/flags")
    @require_project_permission("read")
    def list_flags(project_id):
        ...

Mutating operations check their own permission inside the service layer
(so the rule also holds for non-HTTP callers); routes that only read use
this decorator.
"""

import functools
import logging

from flask import g

from cdeboard.services.permission_service import has_project_permission
from cdeboard.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def require_user(f):
    """Decorator: reject the request with 401 when no JWT user is present."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "jwt_user_id", None) is None:
            return api_error(E.UNAUTHORIZED, "Authentication required")
        return f(*args, **kwargs)
    return decorated


def require_project_permission(codename: str, project_arg: str = "project_id"):
    """
    Decorator: require the JWT user to hold *codename* in the project named
    by the ``project_arg`` view argument.
    """
    def decorator(f):
        @functools.wraps(f)
        @require_user
        def decorated(*args, **kwargs):
            user_id = g.jwt_user_id
            project_id = kwargs.get(project_arg)
            if not has_project_permission(user_id, project_id, codename):
                logger.warning(
                    "User %d denied: missing permission '%s' on %s",
                    user_id, codename, f.__name__,
                    extra={"project_id": project_id, "user_id": user_id},
                )
                return api_error(
                    E.FORBIDDEN, "Permission denied", details={"required": codename},
                )
            return f(*args, **kwargs)
        return decorated
    return decorator
