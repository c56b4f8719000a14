"""
Decision Support orchestration.

Each view resolves settings once, loads one working set and hands both to
the pure aggregators / scorers:

    settings  = load_settings(pid)
    ws        = ProjectRepository().load(pid, start=..., end=...)
    rows      = channel_effectiveness(ws, settings, filters)

The only write here is ``recompute_objective_statuses``, which persists
the objective status cache.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime

from cdeboard.models import db
from cdeboard.services.audit_sink import AuditEvent, AuditSink, create_diff, default_sink
from cdeboard.services.metric_aggregator import MetricFilters, derived_metrics
from cdeboard.services.override_service import current_overrides
from cdeboard.services.permission_service import PermissionChecker, ensure_permission
from cdeboard.services.project_repository import ProjectRepository
from cdeboard.services.recommendation_flags import attach_overrides, generate_flags
from cdeboard.services.scorers import (
    channel_effectiveness,
    evaluate_objective_status,
    latest_value_at,
    objective_diagnostics,
    objective_health,
    resolve_now,
    stakeholder_responsiveness,
)
from cdeboard.services.settings_resolver import get_project_settings

logger = logging.getLogger(__name__)


def _load(project_id, start=None, end=None, repository=None):
    ws = (repository or ProjectRepository()).load(project_id, start=start, end=end)
    return ws, get_project_settings(ws.project)


# ═════════════════════════════════════════════════════════════════════════════
# Read views
# ═════════════════════════════════════════════════════════════════════════════

def get_channel_effectiveness(
    project_id: int,
    *,
    filters: MetricFilters | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[dict]:
    ws, settings = _load(project_id, start, end)
    return channel_effectiveness(ws, settings, filters)


def get_stakeholder_responsiveness(
    project_id: int,
    *,
    filters: MetricFilters | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[dict]:
    ws, settings = _load(project_id, start, end)
    return stakeholder_responsiveness(ws, settings, filters)


def get_objective_health(project_id: int, *, now: datetime | None = None) -> list[dict]:
    ws, settings = _load(project_id)
    return objective_health(ws, settings, now)


def get_objective_diagnostics(project_id: int, *, now: datetime | None = None) -> list[dict]:
    ws, settings = _load(project_id)
    return [d.to_dict() for d in objective_diagnostics(ws, settings, now)]


def get_derived_metrics(
    project_id: int,
    *,
    filters: MetricFilters | None = None,
    start: date | None = None,
    end: date | None = None,
) -> dict:
    ws, settings = _load(project_id, start, end)
    return derived_metrics(ws, settings, filters)


def get_flags(
    project_id: int,
    *,
    filters: MetricFilters | None = None,
    start: date | None = None,
    end: date | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Recommendation flags with their current override, if any."""
    ws, settings = _load(project_id, start, end)
    flags = generate_flags(ws, settings, filters=filters, now=now)
    attach_overrides(flags, current_overrides(project_id))
    return [f.to_dict() for f in flags]


# ═════════════════════════════════════════════════════════════════════════════
# Objective status cache
# ═════════════════════════════════════════════════════════════════════════════

def recompute_objective_statuses(
    project_id: int,
    actor_id: int | None,
    *,
    checker: PermissionChecker | None = None,
    audit_sink: AuditSink | None = None,
    repository: ProjectRepository | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Write status + warnings back onto every objective of the project."""
    ws, settings = _load(project_id, repository=repository)
    ensure_permission(actor_id, project_id, "update", checker)
    now = resolve_now(now)
    last = latest_value_at(ws)

    changes = []
    for objective in ws.objectives:
        status, warnings = evaluate_objective_status(objective, last, settings, now)
        before = {"status": objective.status, "warnings": objective.warnings}
        objective.status = status
        objective.warnings_json = json.dumps(warnings)
        objective.status_evaluated_at = now
        if before != {"status": status, "warnings": warnings}:
            changes.append((objective, before, {"status": status, "warnings": warnings}))
    db.session.commit()

    logger.info(
        "Objective statuses recomputed: %d objective(s), %d changed",
        len(ws.objectives), len(changes),
        extra={"project_id": project_id, "user_id": actor_id},
    )

    sink = audit_sink or default_sink()
    for objective, before, after in changes:
        sink.record(AuditEvent(
            entity_type="objective",
            entity_id=str(objective.id),
            action="objective.recompute_status",
            project_id=project_id,
            actor_id=actor_id,
            diff=create_diff(before, after),
        ))
    return [o.to_dict() for o in ws.objectives]
