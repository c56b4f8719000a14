"""
Recommendation Flag Generator.

A fixed, ordered battery of detectors runs over the working set and its
aggregates.  Each detector emits at most one flag per matching entity.
The final list is stably sorted by severity (high → warn → info) so
detector order is kept within a severity.

Overrides are merged last: a matching current override is attached to the
flag, never used to drop it.

Usage:
    flags = generate_flags(working_set, settings)
    attach_overrides(flags, current_overrides(project_id))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from cdeboard.models.cde import PUBLIC_FACING_DOMAINS
from cdeboard.models.uptake import EXPLOITATION_STAGES, UPTAKE_STAGES
from cdeboard.services.metric_aggregator import (
    MetricFilters,
    activity_evidence_scores,
    filter_activities,
    first_dissemination_dates,
)
from cdeboard.services.project_repository import ProjectWorkingSet
from cdeboard.services.scorers import (
    channel_effectiveness,
    objective_diagnostics,
    resolve_now,
    stakeholder_responsiveness,
)
from cdeboard.services.settings_resolver import DecisionSupportSettings
from cdeboard.utils.helpers import whole_days_between

logger = logging.getLogger(__name__)


class FlagSeverity(str, Enum):
    HIGH = "high"
    WARN = "warn"
    INFO = "info"


SEVERITY_ORDER = {FlagSeverity.HIGH: 0, FlagSeverity.WARN: 1, FlagSeverity.INFO: 2}

# Opportunities that never reached an exploitation stage
STALLED_UPTAKE_STAGES = frozenset(UPTAKE_STAGES) - EXPLOITATION_STAGES


@dataclass
class RecommendationFlag:
    flag_code: str
    entity_type: str
    entity_id: int | str
    entity_name: str
    severity: FlagSeverity
    title: str
    explanation: str
    suggested_action: str
    deep_link_url: str
    override: dict | None = None

    @property
    def id(self) -> str:
        return f"{self.flag_code}:{self.entity_type}:{self.entity_id}"

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.flag_code, self.entity_type, str(self.entity_id))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "flag_code": self.flag_code,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id),
            "entity_name": self.entity_name,
            "severity": self.severity.value,
            "title": self.title,
            "explanation": self.explanation,
            "suggested_action": self.suggested_action,
            "deep_link_url": self.deep_link_url,
            "override": self.override,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Detectors
# ═════════════════════════════════════════════════════════════════════════════

def _stakeholder_flags(ws, settings, filters) -> tuple[list, list]:
    over_targeted, low_response = [], []
    for row in stakeholder_responsiveness(ws, settings, filters):
        group_id = row["stakeholder_group_id"]
        name = row["stakeholder_group_name"]
        link = f"/stakeholders/{group_id}"
        if row["over_targeted"]:
            over_targeted.append(RecommendationFlag(
                flag_code="stakeholder_over_targeted",
                entity_type="stakeholder_group",
                entity_id=group_id,
                entity_name=name,
                severity=FlagSeverity.INFO,
                title=f'Stakeholder group "{name}" is heavily targeted',
                explanation=(
                    f"Targeted by {row['targeted_activities_count']} activities "
                    f"(threshold {settings.stakeholder_high_targeting_threshold:g})"
                ),
                suggested_action="Check for audience fatigue and spread outreach across groups",
                deep_link_url=link,
            ))
        if row["low_response"]:
            ratio = row["responsiveness_ratio"]
            low_response.append(RecommendationFlag(
                flag_code="stakeholder_low_response",
                entity_type="stakeholder_group",
                entity_id=group_id,
                entity_name=name,
                severity=FlagSeverity.HIGH if row["over_targeted"] else FlagSeverity.WARN,
                title=f'Stakeholder group "{name}" responds rarely',
                explanation=(
                    f"{row['response_events_count']} responses across "
                    f"{row['targeted_activities_count']} targeted activities "
                    f"(ratio {ratio:.2f} < {settings.stakeholder_low_response_ratio_threshold:g})"
                ),
                suggested_action="Review messaging or channel choice for this group",
                deep_link_url=link,
            ))
    return over_targeted, low_response


def _channel_flags(ws, settings, filters) -> list:
    flags = []
    threshold = settings.inefficient_channel_effort_hours_threshold
    ranked = channel_effectiveness(ws, settings, filters)
    for row in ranked:
        bottom_tier = (row["is_bottom"] and not row["is_top"]) or not row["meaningful_engagement_total"]
        if row["effort_hours_total"] < threshold or not bottom_tier:
            continue
        flags.append(RecommendationFlag(
            flag_code="channel_inefficient",
            entity_type="channel",
            entity_id=row["channel_id"],
            entity_name=row["channel_name"],
            severity=FlagSeverity.WARN,
            title=f'Channel "{row["channel_name"]}" is inefficient',
            explanation=(
                f"High effort ({row['effort_hours_total']:g}h) with "
                f"{row['meaningful_engagement_total']:g} meaningful engagement; "
                f"ranked {row['rank']} of {len(ranked)}"
            ),
            suggested_action="Review channel strategy or add engagement tracking",
            deep_link_url=f"/channels/{row['channel_id']}",
        ))
    return flags


def _uptake_flags(ws, settings, now) -> list:
    flags = []
    for opp in ws.opportunities:
        if opp.stage not in STALLED_UPTAKE_STAGES or opp.created_at is None:
            continue
        age = whole_days_between(opp.created_at, now)
        if age <= settings.uptake_no_exploitation_days:
            continue
        flags.append(RecommendationFlag(
            flag_code="uptake_stalled",
            entity_type="uptake_opportunity",
            entity_id=opp.id,
            entity_name=opp.title,
            severity=FlagSeverity.WARN,
            title=f'Uptake opportunity "{opp.title}" has stalled',
            explanation=f"Still '{opp.stage}' {age} days after creation",
            suggested_action="Move the opportunity to negotiation or close it",
            deep_link_url=f"/uptake/{opp.id}",
        ))
    return flags


def _evidence_flags(ws, settings, filters) -> list:
    flags = []
    scores = activity_evidence_scores(ws)
    threshold = settings.evidence_completeness_threshold
    for activity in filter_activities(ws, filters):
        if activity.status != "completed" or activity.domain not in PUBLIC_FACING_DOMAINS:
            continue
        if scores[activity.id] >= threshold:
            continue
        flags.append(RecommendationFlag(
            flag_code="activity_evidence_gap",
            entity_type="activity",
            entity_id=activity.id,
            entity_name=activity.title,
            severity=FlagSeverity.INFO,
            title=f'Activity "{activity.title}" has evidence gap',
            explanation=(
                f"Public {activity.domain} activity with evidence completeness "
                f"{scores[activity.id]} < {threshold:g}%"
            ),
            suggested_action="Upload evidence (photos, documents, etc.)",
            deep_link_url=f"/activities/{activity.id}",
        ))
    return flags


def _asset_flags(ws, settings, now) -> list:
    flags = []
    disseminated = first_dissemination_dates(ws)
    with_uptake = {o.asset_id for o in ws.opportunities} | {a.asset_id for a in ws.agreements}
    for asset in ws.assets:
        first = disseminated.get(asset.id)
        if first is None or asset.id in with_uptake:
            continue
        days_since = whole_days_between(first, now)
        if days_since <= settings.uptake_no_exploitation_days:
            continue
        flags.append(RecommendationFlag(
            flag_code="asset_no_exploitation",
            entity_type="asset",
            entity_id=asset.id,
            entity_name=asset.title,
            severity=FlagSeverity.WARN,
            title=f'Asset "{asset.title}" has no exploitation pathway',
            explanation=(
                f"Asset was disseminated {days_since} days ago but has no "
                "uptake opportunities or agreements"
            ),
            suggested_action="Create an uptake opportunity or exploitation plan",
            deep_link_url=f"/assets/{asset.id}",
        ))
    return flags


def _objective_flags(ws, settings, now) -> list:
    flags = []
    for diag in objective_diagnostics(ws, settings, now):
        if diag.status == "on_track":
            continue
        blocked = diag.status == "blocked"
        label = "Blocked" if blocked else "At risk"
        flags.append(RecommendationFlag(
            flag_code="objective_blocked" if blocked else "objective_at_risk",
            entity_type="objective",
            entity_id=diag.objective_id,
            entity_name=diag.objective_title,
            severity=FlagSeverity.HIGH if blocked else FlagSeverity.WARN,
            title=f'Objective "{diag.objective_title}" is {label}',
            explanation="; ".join(diag.reasons),
            suggested_action=", ".join(a["title"] for a in diag.recommended_actions),
            deep_link_url=f"/objectives/{diag.objective_id}",
        ))
    return flags


# ═════════════════════════════════════════════════════════════════════════════
# Battery
# ═════════════════════════════════════════════════════════════════════════════

def generate_flags(
    ws: ProjectWorkingSet,
    settings: DecisionSupportSettings,
    *,
    filters: MetricFilters | None = None,
    now: datetime | None = None,
) -> list[RecommendationFlag]:
    now = resolve_now(now)
    over_targeted, low_response = _stakeholder_flags(ws, settings, filters)

    flags: list[RecommendationFlag] = []
    flags += over_targeted
    flags += low_response
    flags += _channel_flags(ws, settings, filters)
    flags += _uptake_flags(ws, settings, now)
    flags += _evidence_flags(ws, settings, filters)
    flags += _asset_flags(ws, settings, now)
    flags += _objective_flags(ws, settings, now)

    flags.sort(key=lambda f: SEVERITY_ORDER[f.severity])
    logger.debug(
        "Generated %d recommendation flags", len(flags),
        extra={"project_id": ws.project_id},
    )
    return flags


def attach_overrides(flags: list[RecommendationFlag], overrides: dict) -> list[RecommendationFlag]:
    """Left-join current overrides keyed by (flag_code, entity_type, entity_id)."""
    for flag in flags:
        override = overrides.get(flag.key)
        if override is not None:
            flag.override = override.to_dict()
    return flags
