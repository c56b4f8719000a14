"""
Flag override recorder.

Overrides are append-only: each human decision on a recommendation flag is
a new ``FlagOverride`` row, and the newest row per
(flag_code, entity_type, entity_id) is the current state.

Usage:
    record_override(pid, "channel_inefficient", "channel", 7,
                    "not_applicable", "Seasonal channel", actor_id=uid)
    overrides = current_overrides(pid)   # {(code, type, id): FlagOverride}
"""

from __future__ import annotations

import logging

from cdeboard.core.exceptions import NotFoundError, ValidationError
from cdeboard.models import db
from cdeboard.models.decision_support import (
    FLAG_CODES,
    FLAG_ENTITY_TYPES,
    OVERRIDE_STATUSES,
    FlagOverride,
)
from cdeboard.models.project import Project
from cdeboard.services.audit_sink import AuditEvent, AuditSink, create_diff, default_sink
from cdeboard.services.permission_service import PermissionChecker, ensure_permission

logger = logging.getLogger(__name__)


def _validate(flag_code, entity_type, entity_id, status, rationale) -> str:
    errors = {}
    if flag_code not in FLAG_CODES:
        errors["flag_code"] = f"unknown flag code: {flag_code}"
    if entity_type not in FLAG_ENTITY_TYPES:
        errors["entity_type"] = f"unknown entity type: {entity_type}"
    if entity_id is None or str(entity_id).strip() == "":
        errors["entity_id"] = "required"
    if status not in OVERRIDE_STATUSES:
        errors["status"] = f"must be one of {sorted(OVERRIDE_STATUSES)}"
    rationale = (rationale or "").strip() if isinstance(rationale, str) else ""
    if not rationale:
        errors["rationale"] = "required"
    if errors:
        first = next(iter(errors))
        raise ValidationError(f"Invalid override: {first} {errors[first]}", details=errors)
    return rationale


def _latest(project_id: int, flag_code: str, entity_type: str, entity_id: str) -> FlagOverride | None:
    return (
        FlagOverride.query
        .filter_by(
            project_id=project_id, flag_code=flag_code,
            entity_type=entity_type, entity_id=entity_id,
        )
        .order_by(FlagOverride.created_at.desc(), FlagOverride.id.desc())
        .first()
    )


def record_override(
    project_id: int,
    flag_code: str,
    entity_type: str,
    entity_id,
    status: str,
    rationale: str,
    actor_id: int | None,
    *,
    period: str | None = None,
    checker: PermissionChecker | None = None,
    audit_sink: AuditSink | None = None,
) -> FlagOverride:
    """Append an override row; audited as ``create`` or ``update``."""
    rationale = _validate(flag_code, entity_type, entity_id, status, rationale)
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    ensure_permission(actor_id, project_id, "override_flags", checker)

    entity_id = str(entity_id)
    previous = _latest(project_id, flag_code, entity_type, entity_id)
    before = previous.to_dict() if previous else None

    override = FlagOverride(
        project_id=project_id,
        flag_code=flag_code,
        entity_type=entity_type,
        entity_id=entity_id,
        period=period,
        status=status,
        rationale=rationale,
        created_by=actor_id,
    )
    db.session.add(override)
    db.session.commit()

    logger.info(
        "Flag override %s on %s/%s -> %s", flag_code, entity_type, entity_id, status,
        extra={
            "project_id": project_id, "user_id": actor_id,
            "flag_code": flag_code, "entity_type": entity_type, "entity_id": entity_id,
        },
    )

    after = override.to_dict()
    if before is None:
        action, diff = "create", create_diff(None, after)
    else:
        tracked = ("status", "rationale", "period")
        action = "update"
        diff = create_diff(
            {k: before[k] for k in tracked},
            {k: after[k] for k in tracked},
        )
    (audit_sink or default_sink()).record(AuditEvent(
        entity_type="flag_override",
        entity_id=str(override.id),
        action=action,
        project_id=project_id,
        actor_id=actor_id,
        diff=diff,
    ))
    return override


def current_overrides(project_id: int) -> dict[tuple[str, str, str], FlagOverride]:
    """Newest override per flag key."""
    rows = (
        FlagOverride.query.filter_by(project_id=project_id)
        .order_by(FlagOverride.created_at, FlagOverride.id)
        .all()
    )
    current: dict[tuple[str, str, str], FlagOverride] = {}
    for row in rows:
        current[row.key] = row
    return current


def override_history(
    project_id: int,
    *,
    flag_code: str | None = None,
    entity_type: str | None = None,
    entity_id=None,
) -> list[FlagOverride]:
    """Full override history, newest first."""
    q = FlagOverride.query.filter_by(project_id=project_id)
    if flag_code:
        q = q.filter_by(flag_code=flag_code)
    if entity_type:
        q = q.filter_by(entity_type=entity_type)
    if entity_id is not None and str(entity_id) != "":
        q = q.filter_by(entity_id=str(entity_id))
    return q.order_by(FlagOverride.created_at.desc(), FlagOverride.id.desc()).all()
