"""
Metric aggregator: evidence scores, cost proxy, engagement, channel
aggregates, uptake lag and derived metrics.

Working sets are built from transient model instances, no database.
"""

from datetime import date, datetime, timezone

import pytest

from cdeboard.models.cde import Activity, Channel, ResultAsset, StakeholderGroup, SurveyResponse
from cdeboard.models.monitoring import EvidenceItem, EvidenceLink, Indicator, IndicatorValue
from cdeboard.models.uptake import Agreement, UptakeOpportunity
from cdeboard.services.metric_aggregator import (
    MetricFilters,
    aggregate_channels,
    cost_proxy,
    derived_metrics,
    evidence_completeness,
    median,
    uptake_lags,
)
from cdeboard.services.settings_resolver import DecisionSupportSettings, resolve_settings


def _activity(id, **kw):
    kw.setdefault("title", f"Activity {id}")
    kw.setdefault("domain", "communication")
    kw.setdefault("status", "completed")
    return Activity(id=id, project_id=1, **kw)


def _evidence(type="other", evidence_date=None, context=None, source_url=None):
    return EvidenceItem(
        project_id=1, title="Evidence", type=type,
        evidence_date=evidence_date, context=context, source_url=source_url,
    )


def _link(entity_id, item, entity_type="activity"):
    return EvidenceLink(entity_type=entity_type, entity_id=str(entity_id), evidence=item)


# ═══════════════════════════════════════════════════════════════════════════
# Evidence completeness
# ═══════════════════════════════════════════════════════════════════════════

class TestEvidenceCompleteness:
    def test_no_evidence_scores_zero(self):
        assert evidence_completeness("dissemination", []) == 0

    def test_mismatched_type_without_metadata_scores_40(self):
        assert evidence_completeness("dissemination", [_evidence("document")]) == 40

    def test_type_match_adds_30(self):
        assert evidence_completeness("dissemination", [_evidence("photo")]) == 70

    def test_date_without_context_or_source_gets_no_metadata_bonus(self):
        item = _evidence("document", evidence_date=date(2025, 1, 1))
        assert evidence_completeness("dissemination", [item]) == 40

    def test_all_bonuses_score_100(self):
        item = _evidence("photo", evidence_date=date(2025, 1, 1), context="Conference booth")
        assert evidence_completeness("dissemination", [item]) == 100

    def test_score_never_exceeds_100_with_many_items(self):
        items = [
            _evidence("photo", evidence_date=date(2025, 1, 1), source_url="https://x.eu"),
            _evidence("video", evidence_date=date(2025, 2, 1), context="Recording"),
            _evidence("photo"),
        ]
        score = evidence_completeness("dissemination", items)
        assert 0 <= score <= 100
        assert score == 100

    def test_unknown_domain_gets_no_type_bonus(self):
        assert evidence_completeness(None, [_evidence("photo")]) == 40


# ═══════════════════════════════════════════════════════════════════════════
# Cost proxy
# ═══════════════════════════════════════════════════════════════════════════

class TestCostProxy:
    def test_budget_estimate_wins(self):
        assert cost_proxy(_activity(1, budget_estimate=300, effort_hours=10), DecisionSupportSettings()) == 300

    def test_zero_budget_falls_back_to_effort(self):
        assert cost_proxy(_activity(1, budget_estimate=0, effort_hours=10), DecisionSupportSettings()) == 500

    def test_missing_effort_counts_as_zero(self):
        assert cost_proxy(_activity(1), DecisionSupportSettings()) == 0

    def test_uses_configured_hourly_rate(self):
        settings = resolve_settings({"hourly_rate_default": 80})
        assert cost_proxy(_activity(1, effort_hours=2), settings) == 160


# ═══════════════════════════════════════════════════════════════════════════
# Channel aggregates
# ═══════════════════════════════════════════════════════════════════════════

class TestAggregateChannels:
    def test_channels_without_matching_activities_are_omitted(self, build_ws):
        ws = build_ws(
            channels=[Channel(id=1, name="Web", type="website"), Channel(id=2, name="Press", type="press")],
            activities=[_activity(10, channel_id=1, effort_hours=4)],
        )
        rows = aggregate_channels(ws, DecisionSupportSettings())
        assert [r.channel_id for r in rows] == [1]
        assert rows[0].cost_proxy_total == 200

    def test_domain_filter(self, build_ws):
        ws = build_ws(
            channels=[Channel(id=1, name="Web", type="website")],
            activities=[
                _activity(10, channel_id=1, effort_hours=4, domain="communication"),
                _activity(11, channel_id=1, effort_hours=6, domain="dissemination"),
            ],
        )
        rows = aggregate_channels(ws, DecisionSupportSettings(), MetricFilters(domain="dissemination"))
        assert rows[0].activity_count == 1
        assert rows[0].effort_hours_total == 6

    def test_stakeholder_filter(self, build_ws):
        group = StakeholderGroup(id=5, name="SMEs")
        ws = build_ws(
            channels=[Channel(id=1, name="Web", type="website")],
            stakeholder_groups=[group],
            activities=[
                _activity(10, channel_id=1, effort_hours=4, stakeholder_groups=[group]),
                _activity(11, channel_id=1, effort_hours=6),
            ],
        )
        rows = aggregate_channels(ws, DecisionSupportSettings(), MetricFilters(stakeholder_group_id=5))
        assert rows[0].activity_count == 1

    def test_evidence_average_and_adjusted_reach(self, build_ws):
        photo = _evidence("photo", evidence_date=date(2025, 1, 1), context="Booth")
        reach = Indicator(id=50, project_id=1, name="Visitors", category="reach", channel_id=1)
        ws = build_ws(
            channels=[Channel(id=1, name="Web", type="website")],
            activities=[
                _activity(10, channel_id=1, domain="dissemination"),
                _activity(11, channel_id=1, domain="dissemination"),
            ],
            evidence_links=[_link(10, photo)],
            indicators=[reach],
            indicator_values=[
                IndicatorValue(id=1, indicator_id=50, value=400, recorded_at=datetime(2025, 1, 1, tzinfo=timezone.utc)),
                IndicatorValue(id=2, indicator_id=50, value=None, recorded_at=datetime(2025, 2, 1, tzinfo=timezone.utc)),
            ],
        )
        row = aggregate_channels(ws, DecisionSupportSettings())[0]
        assert row.evidence_completeness_avg == 50
        assert row.reach_total == 400
        assert row.evidence_adjusted_reach == 200

    def test_no_engagement_gives_none_cost_per_engagement(self, build_ws):
        ws = build_ws(
            channels=[Channel(id=1, name="Web", type="website")],
            activities=[_activity(10, channel_id=1, effort_hours=4)],
        )
        row = aggregate_channels(ws, DecisionSupportSettings())[0]
        assert row.meaningful_engagement_total == 0
        assert row.cost_per_meaningful_engagement is None


# ═══════════════════════════════════════════════════════════════════════════
# Uptake lag
# ═══════════════════════════════════════════════════════════════════════════

class TestUptakeLag:
    def test_median_helper(self):
        assert median([]) is None
        assert median([3, 1, 100]) == 3
        assert median([2, 4]) == 3

    def test_lag_from_first_dissemination_to_earliest_signal(self, build_ws):
        asset = ResultAsset(id=7, title="Toolkit", type="software")
        ws = build_ws(
            assets=[asset],
            activities=[
                _activity(10, domain="dissemination", asset_id=7, end_date=date(2025, 3, 1)),
                _activity(11, domain="dissemination", asset_id=7, end_date=date(2025, 1, 1)),
            ],
            opportunities=[UptakeOpportunity(id=1, title="Pilot", asset_id=7,
                                             created_at=datetime(2025, 1, 21, 12, tzinfo=timezone.utc))],
            agreements=[Agreement(id=1, title="MoU", asset_id=7,
                                  signed_at=datetime(2025, 1, 11, tzinfo=timezone.utc),
                                  created_at=datetime(2025, 4, 1, tzinfo=timezone.utc))],
        )
        assert uptake_lags(ws) == {7: 10}

    def test_no_signal_gives_none(self, build_ws):
        ws = build_ws(
            assets=[ResultAsset(id=7, title="Toolkit", type="software")],
            activities=[_activity(10, domain="dissemination", asset_id=7, end_date=date(2025, 3, 1))],
        )
        assert uptake_lags(ws) == {7: None}

    def test_derived_metrics_median_by_asset_type(self, build_ws):
        assets = [
            ResultAsset(id=1, title="A", type="dataset"),
            ResultAsset(id=2, title="B", type="dataset"),
            ResultAsset(id=3, title="C", type="software"),
        ]
        activities = [
            _activity(10 + a.id, domain="dissemination", asset_id=a.id, end_date=date(2025, 1, 1))
            for a in assets
        ]
        opportunities = [
            UptakeOpportunity(id=1, title="x", asset_id=1, created_at=datetime(2025, 1, 11, tzinfo=timezone.utc)),
            UptakeOpportunity(id=2, title="y", asset_id=2, created_at=datetime(2025, 1, 31, tzinfo=timezone.utc)),
            UptakeOpportunity(id=3, title="z", asset_id=3, created_at=datetime(2025, 3, 2, tzinfo=timezone.utc)),
        ]
        ws = build_ws(assets=assets, activities=activities, opportunities=opportunities)
        metrics = derived_metrics(ws, DecisionSupportSettings())
        assert metrics["uptake_lag_median_days"] == 30
        assert metrics["uptake_lag_by_asset_type"] == {"dataset": 20, "software": 60}

    def test_derived_metrics_empty_project_reports_none(self, build_ws):
        metrics = derived_metrics(build_ws(), DecisionSupportSettings())
        assert metrics["cost_per_meaningful_engagement_overall"] is None
        assert metrics["evidence_adjusted_reach_overall"] is None
        assert metrics["uptake_lag_median_days"] is None
        assert metrics["cost_per_meaningful_engagement_by_channel"] == {}


def test_survey_signal_reaches_channel_through_activity(build_ws):
    ws = build_ws(
        channels=[Channel(id=1, name="Web", type="website")],
        activities=[_activity(10, channel_id=1, effort_hours=1)],
        survey_responses=[SurveyResponse(id=i, project_id=1, activity_id=10) for i in range(1, 3)],
    )
    row = aggregate_channels(ws, DecisionSupportSettings())[0]
    assert row.engagement.survey_responses == 2
    assert row.meaningful_engagement_total == pytest.approx(2)
