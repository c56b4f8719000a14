"""
Metric Aggregator: folds a project working set into per-channel and
per-asset aggregates.

Pure functions only: no session access.  Inputs are a
``ProjectWorkingSet`` and resolved ``DecisionSupportSettings``.

Conventions:
    - missing numeric fields count as 0 in sums
    - ratios are None when the denominator is 0 or the numerator set is
      empty; "no signal" is never reported as 0

Usage:
    from cdeboard.services.metric_aggregator import aggregate_channels
    rows = aggregate_channels(working_set, settings, MetricFilters(domain="communication"))
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from statistics import median as _median

from cdeboard.models.cde import Activity
from cdeboard.services.project_repository import ProjectWorkingSet
from cdeboard.services.settings_resolver import DecisionSupportSettings
from cdeboard.utils.helpers import whole_days_between


# ═════════════════════════════════════════════════════════════════════════════
# Evidence completeness
# ═════════════════════════════════════════════════════════════════════════════

EVIDENCE_SCORE_ANY = 40
EVIDENCE_SCORE_TYPE_MATCH = 30
EVIDENCE_SCORE_METADATA = 30

# Evidence types that count as fitting proof for each CDE domain.
DOMAIN_EVIDENCE_TYPES: dict[str, frozenset[str]] = {
    "dissemination": frozenset({"photo", "video"}),
    "communication": frozenset({"document", "screenshot"}),
    "exploitation": frozenset({"agreement", "report", "document"}),
}


def evidence_completeness(domain: str | None, evidence_items) -> int:
    """Score 0..100 for the evidence linked to one entity of *domain*."""
    items = [e for e in evidence_items if e is not None]
    if not items:
        return 0

    score = EVIDENCE_SCORE_ANY
    expected = DOMAIN_EVIDENCE_TYPES.get(domain or "", frozenset())
    if any(e.type in expected for e in items):
        score += EVIDENCE_SCORE_TYPE_MATCH
    if any(e.has_complete_metadata for e in items):
        score += EVIDENCE_SCORE_METADATA
    return max(0, min(score, 100))


def activity_evidence_scores(ws: ProjectWorkingSet) -> dict[int, int]:
    return {
        a.id: evidence_completeness(a.domain, ws.evidence_for("activity", a.id))
        for a in ws.activities
    }


# ═════════════════════════════════════════════════════════════════════════════
# Cost & engagement
# ═════════════════════════════════════════════════════════════════════════════

def cost_proxy(activity: Activity, settings: DecisionSupportSettings) -> float:
    """Budget estimate when set and nonzero, else effort × hourly rate."""
    if activity.budget_estimate:
        return float(activity.budget_estimate)
    return float(activity.effort_hours or 0) * settings.hourly_rate_default


@dataclass
class EngagementCounts:
    survey_responses: int = 0
    qualitative_outcomes: int = 0
    uptake_opportunities: int = 0
    agreements: int = 0

    def add_activity(self, ws: ProjectWorkingSet, activity_id: int) -> None:
        self.survey_responses += ws.signal_count("survey_responses", activity_id)
        self.qualitative_outcomes += ws.signal_count("qualitative_outcomes", activity_id)
        self.uptake_opportunities += ws.signal_count("uptake_opportunities", activity_id)
        self.agreements += ws.signal_count("agreements", activity_id)

    def weighted(self, settings: DecisionSupportSettings) -> float:
        return (
            settings.weight("survey_response_weight") * self.survey_responses
            + settings.weight("qual_outcome_weight") * self.qualitative_outcomes
            + settings.weight("uptake_opportunity_weight") * self.uptake_opportunities
            + settings.weight("agreement_weight") * self.agreements
        )

    @property
    def response_events(self) -> int:
        return self.survey_responses + self.qualitative_outcomes


# ═════════════════════════════════════════════════════════════════════════════
# Filters
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MetricFilters:
    domain: str | None = None
    stakeholder_group_id: int | None = None

    def matches(self, activity: Activity) -> bool:
        if self.domain and activity.domain != self.domain:
            return False
        if (
            self.stakeholder_group_id is not None
            and self.stakeholder_group_id not in activity.stakeholder_group_ids
        ):
            return False
        return True


def filter_activities(ws: ProjectWorkingSet, filters: MetricFilters | None = None) -> list[Activity]:
    filters = filters or MetricFilters()
    return [a for a in ws.activities if filters.matches(a)]


# ═════════════════════════════════════════════════════════════════════════════
# Channel aggregates
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class ChannelAggregate:
    channel_id: int
    channel_name: str
    channel_type: str
    activity_count: int = 0
    effort_hours_total: float = 0.0
    cost_proxy_total: float = 0.0
    engagement: EngagementCounts = field(default_factory=EngagementCounts)
    meaningful_engagement_total: float = 0.0
    evidence_completeness_avg: float | None = None
    reach_total: float = 0.0

    @property
    def evidence_adjusted_reach(self) -> float | None:
        if self.evidence_completeness_avg is None:
            return None
        return self.reach_total * self.evidence_completeness_avg / 100

    @property
    def cost_per_meaningful_engagement(self) -> float | None:
        if not self.meaningful_engagement_total:
            return None
        return self.cost_proxy_total / self.meaningful_engagement_total

    def to_dict(self) -> dict:
        return {
            "channel_id": self.channel_id,
            "channel_name": self.channel_name,
            "channel_type": self.channel_type,
            "activity_count": self.activity_count,
            "effort_hours_total": self.effort_hours_total,
            "cost_proxy_total": self.cost_proxy_total,
            "survey_responses": self.engagement.survey_responses,
            "qualitative_outcomes": self.engagement.qualitative_outcomes,
            "uptake_opportunities": self.engagement.uptake_opportunities,
            "agreements": self.engagement.agreements,
            "meaningful_engagement_total": self.meaningful_engagement_total,
            "evidence_completeness_avg": self.evidence_completeness_avg,
            "reach_total": self.reach_total,
            "evidence_adjusted_reach": self.evidence_adjusted_reach,
        }


def _reach_by_channel(ws: ProjectWorkingSet) -> dict[int, float]:
    reach: dict[int, float] = defaultdict(float)
    for indicator in ws.indicators:
        if indicator.category != "reach" or indicator.channel_id is None:
            continue
        for value in ws.values_for(indicator.id):
            reach[indicator.channel_id] += float(value.value or 0)
    return reach


def aggregate_channels(
    ws: ProjectWorkingSet,
    settings: DecisionSupportSettings,
    filters: MetricFilters | None = None,
) -> list[ChannelAggregate]:
    """
    One aggregate per channel that has at least one matching activity,
    in channel id order.  Signals reach a channel through the activity
    they reference.
    """
    activities = filter_activities(ws, filters)
    scores = activity_evidence_scores(ws)
    reach = _reach_by_channel(ws)

    by_channel: dict[int, list[Activity]] = defaultdict(list)
    for activity in activities:
        if activity.channel_id is not None:
            by_channel[activity.channel_id].append(activity)

    rows = []
    for channel in ws.channels:
        channel_activities = by_channel.get(channel.id)
        if not channel_activities:
            continue
        row = ChannelAggregate(
            channel_id=channel.id,
            channel_name=channel.name,
            channel_type=channel.type,
            activity_count=len(channel_activities),
            reach_total=reach.get(channel.id, 0.0),
        )
        for activity in channel_activities:
            row.effort_hours_total += float(activity.effort_hours or 0)
            row.cost_proxy_total += cost_proxy(activity, settings)
            row.engagement.add_activity(ws, activity.id)
        row.meaningful_engagement_total = row.engagement.weighted(settings)
        row.evidence_completeness_avg = (
            sum(scores[a.id] for a in channel_activities) / len(channel_activities)
        )
        rows.append(row)
    return rows


# ═════════════════════════════════════════════════════════════════════════════
# Uptake lag
# ═════════════════════════════════════════════════════════════════════════════

def median(values) -> float | None:
    values = list(values)
    if not values:
        return None
    return _median(values)


def first_dissemination_dates(ws: ProjectWorkingSet) -> dict[int, object]:
    """Earliest dissemination end_date per asset."""
    firsts: dict[int, object] = {}
    for activity in ws.activities:
        if activity.domain != "dissemination" or activity.asset_id is None:
            continue
        if activity.end_date is None:
            continue
        current = firsts.get(activity.asset_id)
        if current is None or activity.end_date < current:
            firsts[activity.asset_id] = activity.end_date
    return firsts


def first_uptake_signals(ws: ProjectWorkingSet) -> dict[int, datetime]:
    """Earliest opportunity or agreement timestamp per asset."""
    firsts: dict[int, datetime] = {}
    signals = [(o.asset_id, o.created_at) for o in ws.opportunities]
    signals += [(a.asset_id, a.signal_at) for a in ws.agreements]
    for asset_id, at in signals:
        if asset_id is None or at is None:
            continue
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        current = firsts.get(asset_id)
        if current is None or at < current:
            firsts[asset_id] = at
    return firsts


def uptake_lags(ws: ProjectWorkingSet) -> dict[int, int | None]:
    """
    Whole days from first dissemination to first uptake signal, per asset.
    None when either date is missing or when the signal predates the
    dissemination.
    """
    disseminated = first_dissemination_dates(ws)
    signals = first_uptake_signals(ws)
    lags: dict[int, int | None] = {}
    for asset in ws.assets:
        start = disseminated.get(asset.id)
        signal = signals.get(asset.id)
        if start is None or signal is None:
            lags[asset.id] = None
            continue
        lag = whole_days_between(start, signal)
        lags[asset.id] = lag if lag >= 0 else None
    return lags


# ═════════════════════════════════════════════════════════════════════════════
# Derived metrics
# ═════════════════════════════════════════════════════════════════════════════

def derived_metrics(
    ws: ProjectWorkingSet,
    settings: DecisionSupportSettings,
    filters: MetricFilters | None = None,
) -> dict:
    channels = aggregate_channels(ws, settings, filters)

    total_cost = sum(c.cost_proxy_total for c in channels)
    total_engagement = sum(c.meaningful_engagement_total for c in channels)
    adjusted = [c.evidence_adjusted_reach for c in channels if c.evidence_adjusted_reach is not None]

    lags = uptake_lags(ws)
    asset_types = {a.id: a.type for a in ws.assets}
    lags_by_type: dict[str, list[int]] = defaultdict(list)
    for asset_id, lag in lags.items():
        if lag is not None:
            lags_by_type[asset_types[asset_id]].append(lag)

    return {
        "cost_per_meaningful_engagement_overall": (
            total_cost / total_engagement if total_engagement else None
        ),
        "cost_per_meaningful_engagement_by_channel": {
            str(c.channel_id): c.cost_per_meaningful_engagement for c in channels
        },
        "evidence_adjusted_reach_overall": sum(adjusted) if adjusted else None,
        "evidence_adjusted_reach_by_channel": {
            str(c.channel_id): c.evidence_adjusted_reach for c in channels
        },
        "uptake_lag_median_days": median(lag for lag in lags.values() if lag is not None),
        "uptake_lag_by_asset_type": {
            asset_type: median(values) for asset_type, values in sorted(lags_by_type.items())
        },
    }
