"""
Recommendation flag generator: detectors, ordering and override merge.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from cdeboard.models.cde import Activity, Channel, ResultAsset, StakeholderGroup
from cdeboard.models.decision_support import FlagOverride
from cdeboard.models.objective import Objective
from cdeboard.models.uptake import EXPLOITATION_STAGES, UptakeOpportunity
from cdeboard.services.recommendation_flags import (
    FlagSeverity,
    attach_overrides,
    generate_flags,
)
from cdeboard.services.settings_resolver import DecisionSupportSettings

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)
SETTINGS = DecisionSupportSettings()


def _codes(flags):
    return [f.flag_code for f in flags]


def test_empty_project_has_no_flags(build_ws):
    assert generate_flags(build_ws(), SETTINGS, now=NOW) == []


def test_over_targeted_low_response_group_is_high(build_ws):
    group = StakeholderGroup(id=1, name="SMEs")
    activities = [
        Activity(id=i, project_id=1, title=f"A{i}", domain="communication", status="planned",
                 stakeholder_groups=[group])
        for i in range(1, 4)
    ]
    flags = generate_flags(build_ws(stakeholder_groups=[group], activities=activities), SETTINGS, now=NOW)

    assert _codes(flags) == ["stakeholder_low_response", "stakeholder_over_targeted"]
    low, over = flags
    assert low.severity == FlagSeverity.HIGH
    assert over.severity == FlagSeverity.INFO
    assert low.id == "stakeholder_low_response:stakeholder_group:1"
    assert low.deep_link_url == "/stakeholders/1"


def test_inefficient_channel_needs_effort_and_bottom_tier(build_ws):
    channels = [Channel(id=1, name="Print", type="press"), Channel(id=2, name="Blog", type="website")]
    activities = [
        Activity(id=10, project_id=1, title="Flyers", domain="communication", status="planned",
                 channel_id=1, effort_hours=25),
        Activity(id=11, project_id=1, title="Posts", domain="communication", status="planned",
                 channel_id=2, effort_hours=5),
    ]
    flags = generate_flags(build_ws(channels=channels, activities=activities), SETTINGS, now=NOW)
    channel_flags = [f for f in flags if f.flag_code == "channel_inefficient"]
    assert [f.entity_id for f in channel_flags] == [1]
    assert channel_flags[0].severity == FlagSeverity.WARN


def test_uptake_stalled_after_threshold(build_ws):
    opportunities = [
        UptakeOpportunity(id=1, title="Old pilot", stage="identified", created_at=NOW - timedelta(days=91)),
        UptakeOpportunity(id=2, title="New pilot", stage="engaged", created_at=NOW - timedelta(days=90)),
        UptakeOpportunity(id=3, title="Signed", stage="agreed", created_at=NOW - timedelta(days=400)),
    ]
    flags = generate_flags(build_ws(opportunities=opportunities), SETTINGS, now=NOW)
    assert [(f.flag_code, f.entity_id) for f in flags] == [("uptake_stalled", 1)]


@pytest.mark.parametrize("stage", sorted(EXPLOITATION_STAGES))
def test_exploitation_stage_opportunity_is_never_stalled(build_ws, stage):
    opportunity = UptakeOpportunity(id=1, title="Deal", stage=stage, created_at=NOW - timedelta(days=365))
    assert generate_flags(build_ws(opportunities=[opportunity]), SETTINGS, now=NOW) == []


@pytest.mark.parametrize("stage", ["identified", "engaged"])
def test_early_stage_opportunity_stalls(build_ws, stage):
    opportunity = UptakeOpportunity(id=1, title="Lead", stage=stage, created_at=NOW - timedelta(days=365))
    assert _codes(generate_flags(build_ws(opportunities=[opportunity]), SETTINGS, now=NOW)) == ["uptake_stalled"]


def test_evidence_gap_only_for_completed_public_activities(build_ws):
    activities = [
        Activity(id=1, project_id=1, title="Press release", domain="communication", status="completed"),
        Activity(id=2, project_id=1, title="Licensing", domain="exploitation", status="completed"),
        Activity(id=3, project_id=1, title="Upcoming talk", domain="dissemination", status="planned"),
    ]
    flags = generate_flags(build_ws(activities=activities), SETTINGS, now=NOW)
    gaps = [f for f in flags if f.flag_code == "activity_evidence_gap"]
    assert [f.entity_id for f in gaps] == [1]
    assert gaps[0].severity == FlagSeverity.INFO


def test_asset_without_exploitation(build_ws):
    asset = ResultAsset(id=7, title="Dataset", type="dataset")
    activity = Activity(id=1, project_id=1, title="Release", domain="dissemination", status="planned",
                        asset_id=7, end_date=(NOW - timedelta(days=120)).date())
    flags = generate_flags(build_ws(assets=[asset], activities=[activity]), SETTINGS, now=NOW)
    assert "asset_no_exploitation" in _codes(flags)


def test_blocked_objective_is_high_and_sorted_first(build_ws):
    objective = Objective(id=1, project_id=1, title="Awareness", domain="communication",
                          kpis_linked_count=1, activities_linked_count=0)
    opportunity = UptakeOpportunity(id=1, title="Pilot", stage="identified",
                                    created_at=NOW - timedelta(days=200))
    flags = generate_flags(build_ws(objectives=[objective], opportunities=[opportunity]), SETTINGS, now=NOW)
    assert _codes(flags) == ["objective_blocked", "uptake_stalled"]
    assert flags[0].severity == FlagSeverity.HIGH


def test_flag_ids_are_deterministic(build_ws):
    opportunity = UptakeOpportunity(id=4, title="Pilot", stage="identified", created_at=NOW - timedelta(days=100))
    ws = build_ws(opportunities=[opportunity])
    first = [f.to_dict() for f in generate_flags(ws, SETTINGS, now=NOW)]
    second = [f.to_dict() for f in generate_flags(ws, SETTINGS, now=NOW)]
    assert first == second
    assert first[0]["id"] == "uptake_stalled:uptake_opportunity:4"


def test_override_is_attached_not_suppressing(build_ws):
    opportunity = UptakeOpportunity(id=4, title="Pilot", stage="identified", created_at=NOW - timedelta(days=100))
    flags = generate_flags(build_ws(opportunities=[opportunity]), SETTINGS, now=NOW)
    override = FlagOverride(
        id=9, project_id=1, flag_code="uptake_stalled", entity_type="uptake_opportunity",
        entity_id="4", status="not_applicable", rationale="Seasonal", created_at=NOW,
    )
    attach_overrides(flags, {override.key: override})

    assert len(flags) == 1
    assert flags[0].override["status"] == "not_applicable"
    assert flags[0].to_dict()["override"]["rationale"] == "Seasonal"


def test_evidence_gap_explanation_names_score_and_threshold(build_ws):
    activity = Activity(id=1, project_id=1, title="Poster", domain="dissemination", status="completed",
                        end_date=date(2025, 1, 1))
    flags = generate_flags(build_ws(activities=[activity]), SETTINGS, now=NOW)
    gap = next(f for f in flags if f.flag_code == "activity_evidence_gap")
    assert "0 < 60%" in gap.explanation
