"""
Decision-support settings resolver.

Covers:
  • per-field fallback to defaults (range, type, NaN, bool)
  • nested weight / definition merge
  • update_settings: merge, permission, audit
"""

import json

import pytest

from cdeboard.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from cdeboard.models import db
from cdeboard.services.settings_resolver import (
    DEFAULT_DEFINITIONS,
    DEFAULT_WEIGHTS,
    DecisionSupportSettings,
    load_settings,
    resolve_settings,
    update_settings,
)


class TestResolveSettings:
    def test_empty_input_gives_defaults(self):
        assert resolve_settings({}) == DecisionSupportSettings()

    @pytest.mark.parametrize("raw", [None, [], "bad", 42])
    def test_non_dict_gives_defaults(self, raw):
        assert resolve_settings(raw) == DecisionSupportSettings()

    def test_negative_evidence_threshold_falls_back_to_60(self):
        settings = resolve_settings({"evidence_completeness_threshold": -5})
        assert settings.evidence_completeness_threshold == 60

    def test_evidence_threshold_above_100_falls_back(self):
        assert resolve_settings({"evidence_completeness_threshold": 101}).evidence_completeness_threshold == 60

    def test_ratio_outside_unit_interval_falls_back(self):
        settings = resolve_settings({"stakeholder_low_response_ratio_threshold": 1.5})
        assert settings.stakeholder_low_response_ratio_threshold == 0.5

    def test_zero_hourly_rate_falls_back(self):
        assert resolve_settings({"hourly_rate_default": 0}).hourly_rate_default == 50

    def test_bool_and_string_values_are_rejected(self):
        settings = resolve_settings({
            "hourly_rate_default": True,
            "uptake_no_exploitation_days": "120",
        })
        assert settings.hourly_rate_default == 50
        assert settings.uptake_no_exploitation_days == 90

    def test_nan_is_rejected(self):
        assert resolve_settings({"hourly_rate_default": float("nan")}).hourly_rate_default == 50

    def test_json_infinity_is_rejected(self):
        raw = json.loads('{"hourly_rate_default": Infinity, "evidence_completeness_threshold": -Infinity}')
        settings = resolve_settings(raw)
        assert settings.hourly_rate_default == 50
        assert settings.evidence_completeness_threshold == 60

    def test_oversized_int_is_rejected(self):
        settings = resolve_settings({"hourly_rate_default": 10**400, "uptake_no_exploitation_days": 10**400})
        assert settings.hourly_rate_default == 50
        assert settings.uptake_no_exploitation_days == 90

    @pytest.mark.parametrize("value", [float("inf"), 10**400, float("nan")])
    def test_non_finite_weight_is_ignored(self, value):
        settings = resolve_settings({"meaningful_engagement_weights": {"agreement_weight": value}})
        assert settings.weight("agreement_weight") == DEFAULT_WEIGHTS["agreement_weight"]

    def test_resolved_settings_serialise_as_valid_json(self):
        raw = json.loads('{"hourly_rate_default": Infinity, "meaningful_engagement_weights": {"agreement_weight": Infinity}}')
        json.dumps(resolve_settings(raw).to_dict(), allow_nan=False)

    def test_valid_values_are_kept_independently(self):
        settings = resolve_settings({
            "hourly_rate_default": 80,
            "evidence_completeness_threshold": -1,
            "objective_stale_data_days": 14,
        })
        assert settings.hourly_rate_default == 80
        assert settings.evidence_completeness_threshold == 60
        assert settings.objective_stale_data_days == 14

    def test_partial_weights_merge_over_defaults(self):
        settings = resolve_settings({"meaningful_engagement_weights": {"agreement_weight": 5}})
        assert settings.weight("agreement_weight") == 5
        assert settings.weight("survey_response_weight") == DEFAULT_WEIGHTS["survey_response_weight"]

    def test_negative_weight_ignored(self):
        settings = resolve_settings({"meaningful_engagement_weights": {"survey_response_weight": -1}})
        assert settings.weight("survey_response_weight") == 1

    def test_definitions_merge_and_blank_ignored(self):
        settings = resolve_settings({"definitions": {
            "uptake_lag_definition": "Days to first signal",
            "evidence_completeness_definition": "   ",
        }})
        assert settings.definitions["uptake_lag_definition"] == "Days to first signal"
        assert settings.definitions["evidence_completeness_definition"] == (
            DEFAULT_DEFINITIONS["evidence_completeness_definition"]
        )

    def test_to_dict_is_fully_populated(self):
        data = resolve_settings({}).to_dict()
        assert data["compliance_stale_days_threshold"] == 30
        assert data["compliance_warning_weight_threshold"] == 5
        assert set(DEFAULT_WEIGHTS) <= set(data["meaningful_engagement_weights"])


class TestUpdateSettings:
    def test_merges_and_resolves(self, project, allow_all, recording_sink):
        project.settings_json = {"hourly_rate_default": 70, "meaningful_engagement_weights": {"agreement_weight": 4}}
        db.session.commit()

        settings = update_settings(
            project.id,
            {"evidence_completeness_threshold": 75, "meaningful_engagement_weights": {"survey_response_weight": 2}},
            actor_id=1, checker=allow_all, audit_sink=recording_sink,
        )
        assert settings.hourly_rate_default == 70
        assert settings.evidence_completeness_threshold == 75
        assert settings.weight("agreement_weight") == 4
        assert settings.weight("survey_response_weight") == 2
        assert load_settings(project.id) == settings

    def test_invalid_value_is_stored_but_resolved_to_default(self, project, allow_all, recording_sink):
        settings = update_settings(
            project.id, {"evidence_completeness_threshold": -5}, 1,
            checker=allow_all, audit_sink=recording_sink,
        )
        assert settings.evidence_completeness_threshold == 60
        assert project.settings_json["evidence_completeness_threshold"] == -5

    def test_audits_with_diff(self, project, allow_all, recording_sink):
        update_settings(project.id, {"hourly_rate_default": 90}, 7, checker=allow_all, audit_sink=recording_sink)
        assert len(recording_sink.events) == 1
        event = recording_sink.events[0]
        assert event.action == "settings.update"
        assert event.actor_id == 7
        assert event.diff == {"hourly_rate_default": {"old": None, "new": 90}}

    def test_permission_denied(self, project, deny_all, recording_sink):
        with pytest.raises(PermissionDeniedError):
            update_settings(project.id, {"hourly_rate_default": 90}, 1, checker=deny_all, audit_sink=recording_sink)
        assert recording_sink.events == []

    def test_non_dict_patch_rejected(self, project, allow_all):
        with pytest.raises(ValidationError):
            update_settings(project.id, ["bad"], 1, checker=allow_all)

    def test_unknown_project(self, allow_all):
        with pytest.raises(NotFoundError):
            update_settings(999, {}, 1, checker=allow_all)


def test_oversized_stored_rate_does_not_break_channel_view(project):
    from cdeboard.models.cde import Activity, Channel
    from cdeboard.services.decision_support_service import get_channel_effectiveness

    channel = Channel(project_id=project.id, name="Web", type="website")
    db.session.add(channel)
    db.session.flush()
    db.session.add(Activity(
        project_id=project.id, title="Post", domain="communication",
        status="completed", channel_id=channel.id, effort_hours=10,
    ))
    project.settings_json = {"hourly_rate_default": 10**400}
    db.session.commit()

    rows = get_channel_effectiveness(project.id)
    assert rows[0]["cost_proxy_total"] == 500
