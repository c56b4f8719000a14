"""
Platform-wide exception hierarchy.

Services raise these; the app factory registers one handler per type so
every blueprint gets the same HTTP status codes.

Usage:
    from cdeboard.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id=42)
    raise ValidationError("rationale is required", details={"rationale": "blank"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given project.

    Args:
        resource: Human-readable model/entity name (e.g. "Project", "ComplianceIssue").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        project_id: Optional scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        project_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.project_id = project_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if project_id is not None:
            msg += f" (project={project_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PermissionDeniedError(Exception):
    """Raised when the permission checker refuses a mutating operation.

    Never conflated with NotFoundError or ValidationError: the caller
    must be able to tell "you may not" apart from "it is not there" and
    "the input is wrong". Maps to HTTP 403.

    Args:
        permission: The permission codename that was required.
        user_id: The caller, if known.
        project_id: The project scope of the check.
    """

    def __init__(
        self,
        permission: str,
        user_id: int | None = None,
        project_id: int | None = None,
    ) -> None:
        self.permission = permission
        self.user_id = user_id
        self.project_id = project_id
        super().__init__(f"Permission '{permission}' required")
