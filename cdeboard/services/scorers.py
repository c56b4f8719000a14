"""
Effectiveness & Health Scorers.

Applies formulas and thresholds to aggregates:

    - channel effectiveness score + ranking
    - objective status (cached on the Objective row by the orchestration layer)
    - objective diagnostics (coverage view with reasons / actions)
    - stakeholder responsiveness

Everything here is a pure function of (working set, settings, now).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from cdeboard.models.objective import Objective
from cdeboard.services.metric_aggregator import (
    ChannelAggregate,
    EngagementCounts,
    MetricFilters,
    activity_evidence_scores,
    aggregate_channels,
    filter_activities,
)
from cdeboard.services.project_repository import ProjectWorkingSet
from cdeboard.services.settings_resolver import DecisionSupportSettings
from cdeboard.utils.helpers import as_utc

logger = logging.getLogger(__name__)

TOP_TIER_SIZE = 3
# Recent-dissemination lookback for the exploitation-gap diagnostic.
EXPLOITATION_LOOKBACK_DAYS = 90
# Coverage below this is an execution gap; at or above it, an effectiveness gap.
EXECUTION_GAP_COVERAGE = 0.5


def resolve_now(now: datetime | None) -> datetime:
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Channel effectiveness
# ═════════════════════════════════════════════════════════════════════════════

def effectiveness_score(aggregate: ChannelAggregate) -> float | None:
    """meaningful engagement / cost proxy; None when cost is 0."""
    if not aggregate.cost_proxy_total:
        return None
    return aggregate.meaningful_engagement_total / aggregate.cost_proxy_total


def rank_channels(aggregates: list[ChannelAggregate]) -> list[dict]:
    """
    Sort descending by score (None last, ties by channel id) and mark the
    positional top / bottom tiers.
    """
    scored = [(effectiveness_score(a), a) for a in aggregates]
    scored.sort(key=lambda pair: (
        pair[0] is None,
        -(pair[0] or 0.0),
        pair[1].channel_id,
    ))

    n = len(scored)
    rows = []
    for index, (score, aggregate) in enumerate(scored):
        row = aggregate.to_dict()
        row.update({
            "effectiveness_score": score,
            "rank": index + 1,
            "is_top": index < TOP_TIER_SIZE,
            "is_bottom": index >= n - TOP_TIER_SIZE,
        })
        rows.append(row)
    return rows


def channel_effectiveness(
    ws: ProjectWorkingSet,
    settings: DecisionSupportSettings,
    filters: MetricFilters | None = None,
) -> list[dict]:
    return rank_channels(aggregate_channels(ws, settings, filters))


# ═════════════════════════════════════════════════════════════════════════════
# Objective status (first-match precedence)
# ═════════════════════════════════════════════════════════════════════════════

WARN_NO_KPIS = "No KPIs linked to this objective"
WARN_NO_ACTIVITIES = "No activities linked to this objective"
WARN_NO_DATA = "No data recorded yet"


def stale_data_warning(days) -> str:
    return f"No recent data (last {days:g} days)"


def evaluate_objective_status(
    objective: Objective,
    latest_value_at: datetime | None,
    settings: DecisionSupportSettings,
    now: datetime | None = None,
) -> tuple[str, list[str]]:
    """
    Run every check in fixed order.  Each unmet check appends its warning;
    only the first unmet check sets the status.
    """
    now = resolve_now(now)
    warnings: list[str] = []
    status = "on_track"

    def _flag(candidate: str, warning: str) -> None:
        nonlocal status
        warnings.append(warning)
        if status == "on_track":
            status = candidate

    if not objective.kpis_linked_count:
        _flag("needs_kpis", WARN_NO_KPIS)
    if not objective.activities_linked_count:
        _flag("needs_activities", WARN_NO_ACTIVITIES)
    if latest_value_at is None:
        _flag("no_data", WARN_NO_DATA)
    else:
        cutoff = now - timedelta(days=settings.objective_stale_data_days)
        if as_utc(latest_value_at) < cutoff:
            _flag("at_risk", stale_data_warning(settings.objective_stale_data_days))

    return status, warnings


def latest_value_at(ws: ProjectWorkingSet) -> datetime | None:
    stamps = [v.recorded_at for v in ws.indicator_values if v.recorded_at is not None]
    return max((as_utc(s) for s in stamps), default=None)


def objective_health(
    ws: ProjectWorkingSet,
    settings: DecisionSupportSettings,
    now: datetime | None = None,
) -> list[dict]:
    last = latest_value_at(ws)
    rows = []
    for objective in ws.objectives:
        status, warnings = evaluate_objective_status(objective, last, settings, now)
        rows.append({
            "objective_id": objective.id,
            "title": objective.title,
            "kpis_linked": objective.kpis_linked_count or 0,
            "activities_linked": objective.activities_linked_count or 0,
            "last_updated": last.isoformat() if last else None,
            "status": status,
            "warnings": warnings,
        })
    return rows


# ═════════════════════════════════════════════════════════════════════════════
# Objective diagnostics
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class ObjectiveDiagnostic:
    objective_id: int
    objective_title: str
    objective_domain: str
    linked_activities_count: int = 0
    linked_activities_by_domain: dict[str, int] = field(default_factory=dict)
    linked_assets_count: int = 0
    linked_indicators_count: int = 0
    indicator_progress_ratio: float | None = None
    evidence_coverage_ratio: float | None = None
    meaningful_engagement_exists: bool = False
    status: str = "on_track"
    reasons: list[str] = field(default_factory=list)
    recommended_actions: list[dict] = field(default_factory=list)

    def add_gap(self, reason: str, title: str, description: str, link: str) -> None:
        self.reasons.append(reason)
        self.recommended_actions.append({"title": title, "description": description, "link": link})

    def to_dict(self) -> dict:
        return {
            "objective_id": self.objective_id,
            "objective_title": self.objective_title,
            "objective_domain": self.objective_domain,
            "linked_activities_count": self.linked_activities_count,
            "linked_activities_by_domain": self.linked_activities_by_domain,
            "linked_assets_count": self.linked_assets_count,
            "linked_indicators_count": self.linked_indicators_count,
            "indicator_progress_ratio": self.indicator_progress_ratio,
            "evidence_coverage_ratio": self.evidence_coverage_ratio,
            "meaningful_engagement_exists": self.meaningful_engagement_exists,
            "status": self.status,
            "reasons": self.reasons,
            "recommended_actions": self.recommended_actions,
        }


def _progress_ratio(ws: ProjectWorkingSet, objective_id: int) -> tuple[int, float | None]:
    indicators = [i for i in ws.indicators if i.objective_id == objective_id]
    ratios = []
    for indicator in indicators:
        if not indicator.target or indicator.target <= 0:
            continue
        values = ws.values_for(indicator.id)
        if not values:
            continue
        ratios.append(float(values[-1].value or 0) / indicator.target)
    return len(indicators), (sum(ratios) / len(ratios) if ratios else None)


def objective_diagnostics(
    ws: ProjectWorkingSet,
    settings: DecisionSupportSettings,
    now: datetime | None = None,
) -> list[ObjectiveDiagnostic]:
    now = resolve_now(now)
    scores = activity_evidence_scores(ws)
    lookback = (now - timedelta(days=EXPLOITATION_LOOKBACK_DAYS)).date()

    results = []
    for objective in ws.objectives:
        diag = ObjectiveDiagnostic(
            objective_id=objective.id,
            objective_title=objective.title,
            objective_domain=objective.domain,
        )
        linked = [a for a in ws.activities if a.objective_id == objective.id]
        diag.linked_activities_count = len(linked)
        by_domain: dict[str, int] = defaultdict(int)
        for activity in linked:
            by_domain[activity.domain] += 1
        diag.linked_activities_by_domain = dict(by_domain)
        asset_ids = {a.asset_id for a in linked if a.asset_id is not None}
        diag.linked_assets_count = len(asset_ids)
        diag.linked_indicators_count, diag.indicator_progress_ratio = _progress_ratio(ws, objective.id)

        if linked:
            covered = sum(1 for a in linked if scores[a.id] >= settings.evidence_completeness_threshold)
            diag.evidence_coverage_ratio = covered / len(linked)
        engagement = EngagementCounts()
        for activity in linked:
            engagement.add_activity(ws, activity.id)
        diag.meaningful_engagement_exists = engagement.response_events > 0

        if not linked:
            diag.status = "blocked"
            diag.add_gap(
                WARN_NO_ACTIVITIES,
                "Create activities", "Add activities to progress this objective",
                f"/activities?objective={objective.id}",
            )
            results.append(diag)
            continue

        progress = diag.indicator_progress_ratio
        coverage = diag.evidence_coverage_ratio or 0.0
        if progress is not None and progress >= settings.objective_on_track_progress_threshold:
            diag.status = "on_track"
        elif coverage >= settings.objective_evidence_coverage_threshold and diag.meaningful_engagement_exists:
            diag.status = "on_track"
        else:
            diag.status = "at_risk"
            dissemination_count = by_domain.get("dissemination", 0)
            if asset_ids and dissemination_count == 0:
                diag.add_gap(
                    "Dissemination coverage gap: objective has assets but no dissemination activities",
                    "Plan dissemination", "Create dissemination activities for the linked assets",
                    "/activities?domain=dissemination",
                )
            if coverage < EXECUTION_GAP_COVERAGE:
                diag.add_gap(
                    "Execution gap: activities exist but evidence coverage is low",
                    "Add evidence", "Upload evidence for completed activities",
                    "/monitoring",
                )
            elif not diag.meaningful_engagement_exists:
                diag.add_gap(
                    "Effectiveness gap: evidence exists but no meaningful engagement or outcomes recorded",
                    "Record outcomes", "Log qualitative outcomes or survey responses",
                    "/monitoring",
                )
            if dissemination_count:
                recent = any(
                    a.domain == "dissemination" and a.end_date is not None and a.end_date >= lookback
                    for a in linked
                )
                activity_ids = {a.id for a in linked}
                has_uptake = any(
                    o.asset_id in asset_ids or o.activity_id in activity_ids
                    for o in (*ws.opportunities, *ws.agreements)
                )
                if recent and not has_uptake:
                    diag.add_gap(
                        "Exploitation gap: dissemination exists but no uptake signals within 3 months",
                        "Track uptake", "Record uptake opportunities or exploitation plans",
                        "/uptake",
                    )
        results.append(diag)
    return results


# ═════════════════════════════════════════════════════════════════════════════
# Stakeholder responsiveness
# ═════════════════════════════════════════════════════════════════════════════

def stakeholder_responsiveness(
    ws: ProjectWorkingSet,
    settings: DecisionSupportSettings,
    filters: MetricFilters | None = None,
) -> list[dict]:
    """
    Per group: targeted activity count, response events (survey responses
    and qualitative outcomes on targeted activities) and their ratio.
    Sorted by ratio descending (None last), ties by group id.
    """
    activities = filter_activities(ws, filters)
    rows = []
    for group in ws.stakeholder_groups:
        targeted = [a for a in activities if group.id in a.stakeholder_group_ids]
        engagement = EngagementCounts()
        for activity in targeted:
            engagement.add_activity(ws, activity.id)
        count = len(targeted)
        ratio = engagement.response_events / count if count else None
        over_targeted = count >= settings.stakeholder_high_targeting_threshold
        low_response = ratio is not None and ratio < settings.stakeholder_low_response_ratio_threshold
        rows.append({
            "stakeholder_group_id": group.id,
            "stakeholder_group_name": group.name,
            "targeted_activities_count": count,
            "response_events_count": engagement.response_events,
            "responsiveness_ratio": ratio,
            "over_targeted": over_targeted,
            "low_response": low_response,
            "flag_high_targeting_low_response": over_targeted and low_response,
        })
    rows.sort(key=lambda r: (
        r["responsiveness_ratio"] is None,
        -(r["responsiveness_ratio"] or 0.0),
        r["stakeholder_group_id"],
    ))
    return rows
