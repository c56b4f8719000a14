"""
Decision-support settings resolver.

Turns the raw, untrusted ``Project.settings_json`` bundle into a fully
populated, immutable ``DecisionSupportSettings`` value.  The resolver never
raises: every field is validated on its own and silently falls back to its
documented default when it is missing or out of range.

Usage:
    from cdeboard.services.settings_resolver import resolve_settings
    settings = resolve_settings(project.settings_json)
    settings.hourly_rate_default   # -> 50 unless overridden

The resolved value is passed explicitly into every aggregator / scorer
call; nothing in the engine reads ``settings_json`` directly.
"""

from __future__ import annotations

import copy
import logging
import math
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from cdeboard.core.exceptions import NotFoundError, ValidationError
from cdeboard.models import db
from cdeboard.models.project import Project
from cdeboard.services.audit_sink import AuditEvent, AuditSink, create_diff, default_sink
from cdeboard.services.permission_service import PermissionChecker, ensure_permission

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Defaults
# ═════════════════════════════════════════════════════════════════════════════

DEFAULT_WEIGHTS: dict[str, float] = {
    "survey_response_weight": 1,
    "qual_outcome_weight": 1,
    "uptake_opportunity_weight": 2,
    "agreement_weight": 3,
}

DEFAULT_DEFINITIONS: dict[str, str] = {
    "meaningful_engagement_definition": (
        "Actions by stakeholders that demonstrate active consideration or adoption "
        "of project outputs, including survey responses, documented outcomes, "
        "uptake opportunities, and formal agreements."
    ),
    "evidence_completeness_definition": (
        "A score (0-100) measuring the quality and appropriateness of evidence "
        "attached to activities. Score components: +40 for any evidence, +30 for "
        "evidence type matching activity domain, +30 for complete metadata "
        "(date, context/source)."
    ),
    "uptake_lag_definition": (
        "The time elapsed (in days) between the first dissemination of an asset "
        "and the first recorded uptake signal (opportunity or agreement)."
    ),
}


def _positive(value) -> bool:
    return value > 0


def _percent(value) -> bool:
    return 0 <= value <= 100


def _ratio(value) -> bool:
    return 0 <= value <= 1


# field name -> (default, range check)
SCALAR_FIELDS: dict[str, tuple[float, Callable[[Any], bool]]] = {
    "hourly_rate_default": (50, _positive),
    "evidence_completeness_threshold": (60, _percent),
    "stakeholder_high_targeting_threshold": (3, _positive),
    "stakeholder_low_response_ratio_threshold": (0.5, _ratio),
    "uptake_no_exploitation_days": (90, _positive),
    "inefficient_channel_effort_hours_threshold": (20, _positive),
    "objective_on_track_progress_threshold": (0.8, _ratio),
    "objective_evidence_coverage_threshold": (0.7, _ratio),
    "objective_stale_data_days": (30, _positive),
    "compliance_stale_days_threshold": (30, _positive),
    "compliance_warning_weight_threshold": (5, _positive),
}


@dataclass(frozen=True)
class DecisionSupportSettings:
    hourly_rate_default: float = 50
    evidence_completeness_threshold: float = 60
    stakeholder_high_targeting_threshold: float = 3
    stakeholder_low_response_ratio_threshold: float = 0.5
    uptake_no_exploitation_days: float = 90
    inefficient_channel_effort_hours_threshold: float = 20
    objective_on_track_progress_threshold: float = 0.8
    objective_evidence_coverage_threshold: float = 0.7
    objective_stale_data_days: float = 30
    compliance_stale_days_threshold: float = 30
    compliance_warning_weight_threshold: float = 5
    meaningful_engagement_weights: dict = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    definitions: dict = field(default_factory=lambda: dict(DEFAULT_DEFINITIONS))

    def weight(self, name: str) -> float:
        return self.meaningful_engagement_weights.get(name, DEFAULT_WEIGHTS.get(name, 0))

    def to_dict(self) -> dict:
        return asdict(self)


# ═════════════════════════════════════════════════════════════════════════════
# Resolution
# ═════════════════════════════════════════════════════════════════════════════

def _is_number(value) -> bool:
    # bool is an int subclass but never a valid threshold
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except OverflowError:
        return False


def _resolve_weights(raw) -> dict[str, float]:
    weights = dict(DEFAULT_WEIGHTS)
    if not isinstance(raw, dict):
        return weights
    for key, value in raw.items():
        if _is_number(value) and value >= 0:
            weights[key] = value
    return weights


def _resolve_definitions(raw) -> dict[str, str]:
    definitions = dict(DEFAULT_DEFINITIONS)
    if not isinstance(raw, dict):
        return definitions
    for key, value in raw.items():
        if isinstance(value, str) and value.strip():
            definitions[key] = value
    return definitions


def resolve_settings(raw: Any) -> DecisionSupportSettings:
    """Validate *raw* field by field, substituting defaults for bad values."""
    if not isinstance(raw, dict):
        return DecisionSupportSettings()

    values: dict[str, Any] = {}
    rejected: list[str] = []
    for name, (default, in_range) in SCALAR_FIELDS.items():
        if name not in raw:
            values[name] = default
            continue
        candidate = raw[name]
        if _is_number(candidate) and in_range(candidate):
            values[name] = candidate
        else:
            values[name] = default
            rejected.append(name)

    if rejected:
        logger.debug("Settings fields fell back to defaults: %s", ", ".join(rejected))

    return DecisionSupportSettings(
        **values,
        meaningful_engagement_weights=_resolve_weights(raw.get("meaningful_engagement_weights")),
        definitions=_resolve_definitions(raw.get("definitions")),
    )


def get_project_settings(project: Project | None) -> DecisionSupportSettings:
    if project is None or not project.settings_json:
        return DecisionSupportSettings()
    return resolve_settings(project.settings_json)


def load_settings(project_id: int) -> DecisionSupportSettings:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return get_project_settings(project)


# ═════════════════════════════════════════════════════════════════════════════
# Write path
# ═════════════════════════════════════════════════════════════════════════════

_NESTED_KEYS = ("meaningful_engagement_weights", "definitions")


def _merge_patch(stored: dict, patch: dict) -> dict:
    merged = copy.deepcopy(stored) if isinstance(stored, dict) else {}
    for key, value in patch.items():
        if key in _NESTED_KEYS and isinstance(value, dict):
            nested = merged.get(key)
            nested = dict(nested) if isinstance(nested, dict) else {}
            nested.update(value)
            merged[key] = nested
        else:
            merged[key] = value
    return merged


def update_settings(
    project_id: int,
    patch: dict,
    actor_id: int | None,
    *,
    checker: PermissionChecker | None = None,
    audit_sink: AuditSink | None = None,
) -> DecisionSupportSettings:
    """
    Merge *patch* into the stored raw bundle (last write wins) and return
    the resolved view.  Invalid values are stored as sent; the resolver
    neutralises them on every read.
    """
    if not isinstance(patch, dict):
        raise ValidationError("Settings patch must be an object")

    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    ensure_permission(actor_id, project_id, "update", checker)

    before = copy.deepcopy(project.settings_json or {})
    project.settings_json = _merge_patch(before, patch)
    db.session.commit()

    logger.info(
        "Decision-support settings updated: %s",
        ", ".join(sorted(patch)) or "(empty patch)",
        extra={"project_id": project_id, "user_id": actor_id},
    )

    (audit_sink or default_sink()).record(AuditEvent(
        entity_type="project_settings",
        entity_id=str(project_id),
        action="settings.update",
        project_id=project_id,
        actor_id=actor_id,
        diff=create_diff(before, project.settings_json),
    ))
    return get_project_settings(project)
