"""
HTTP layer: health probes, auth, permissions, request parsing and the
main decision-support and compliance endpoints.

Mutating calls go through the real role-based checker and the database
audit sink.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from cdeboard.models import db
from cdeboard.models.audit import AuditLog
from cdeboard.models.cde import Activity, Channel
from cdeboard.models.compliance import ComplianceRule
from cdeboard.models.uptake import UptakeOpportunity


def _base(project):
    return f"/api/v1/projects/{project.id}"


@pytest.fixture()
def viewer(project, make_member):
    return make_member(project, "viewer")


@pytest.fixture()
def lead(project, make_member):
    return make_member(project, "cde_lead")


# ── Health ───────────────────────────────────────────────────────────────────


class TestHealth:
    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_ready_checks_database(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"


# ── Auth & permissions ───────────────────────────────────────────────────────


class TestAuth:
    def test_missing_token_is_401(self, client, project):
        res = client.get(f"{_base(project)}/decision-support/flags")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_garbage_token_is_401(self, client, project):
        res = client.get(
            f"{_base(project)}/decision-support/flags",
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert res.status_code == 401

    def test_non_member_is_403(self, client, project, make_user, auth_headers):
        outsider = make_user()
        res = client.get(f"{_base(project)}/decision-support/flags", headers=auth_headers(outsider))
        assert res.status_code == 403

    def test_viewer_cannot_run_check(self, client, project, viewer, auth_headers):
        res = client.post(f"{_base(project)}/compliance/checks", headers=auth_headers(viewer))
        assert res.status_code == 403
        assert res.get_json()["details"] == {"required": "run_compliance_check"}

    def test_viewer_cannot_override(self, client, project, viewer, auth_headers):
        res = client.post(
            f"{_base(project)}/decision-support/overrides",
            headers=auth_headers(viewer),
            json={
                "flag_code": "uptake_stalled", "entity_type": "uptake_opportunity",
                "entity_id": 1, "status": "acknowledged", "rationale": "Known",
            },
        )
        assert res.status_code == 403
        assert res.get_json()["details"] == {"required": "override_flags"}


class TestErrorHandlers:
    def test_every_engine_exception_has_a_handler(self, app):
        from cdeboard.core import exceptions

        engine_errors = {
            obj for obj in vars(exceptions).values()
            if isinstance(obj, type) and issubclass(obj, Exception) and obj.__module__ == exceptions.__name__
        }
        assert engine_errors == {
            exceptions.NotFoundError, exceptions.ValidationError, exceptions.PermissionDeniedError,
        }
        assert engine_errors <= set(app.error_handler_spec[None][None])


# ── Settings ─────────────────────────────────────────────────────────────────


class TestSettingsApi:
    def test_get_defaults(self, client, project, viewer, auth_headers):
        res = client.get(f"{_base(project)}/decision-support/settings", headers=auth_headers(viewer))
        assert res.status_code == 200
        assert res.get_json()["evidence_completeness_threshold"] == 60

    def test_put_merges_and_audits(self, client, project, lead, auth_headers):
        res = client.put(
            f"{_base(project)}/decision-support/settings",
            headers=auth_headers(lead),
            json={"hourly_rate_default": 75},
        )
        assert res.status_code == 200
        assert res.get_json()["hourly_rate_default"] == 75
        log = AuditLog.query.filter_by(project_id=project.id, action="settings.update").one()
        assert log.actor_user_id == lead.id

    def test_put_invalid_value_resolves_to_default(self, client, project, lead, auth_headers):
        res = client.put(
            f"{_base(project)}/decision-support/settings",
            headers=auth_headers(lead),
            json={"evidence_completeness_threshold": -5},
        )
        assert res.status_code == 200
        assert res.get_json()["evidence_completeness_threshold"] == 60

    def test_malformed_json_is_400(self, client, project, lead, auth_headers):
        res = client.put(
            f"{_base(project)}/decision-support/settings",
            headers={**auth_headers(lead), "Content-Type": "application/json"},
            data="{not json",
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_json_array_is_400(self, client, project, lead, auth_headers):
        res = client.put(
            f"{_base(project)}/decision-support/settings",
            headers=auth_headers(lead),
            data=json.dumps([1, 2]),
            content_type="application/json",
        )
        assert res.status_code == 400


# ── Views ────────────────────────────────────────────────────────────────────


class TestViews:
    @pytest.fixture()
    def seeded(self, project):
        channel = Channel(project_id=project.id, name="Newsletter", type="newsletter")
        db.session.add(channel)
        db.session.flush()
        db.session.add(Activity(
            project_id=project.id, title="Issue #1", domain="communication",
            status="completed", channel_id=channel.id, effort_hours=30,
        ))
        db.session.add(UptakeOpportunity(
            project_id=project.id, title="Pilot with city", stage="identified",
            created_at=datetime.now(timezone.utc) - timedelta(days=120),
        ))
        db.session.commit()
        return channel

    def test_channels(self, client, project, viewer, auth_headers, seeded):
        res = client.get(f"{_base(project)}/decision-support/channels", headers=auth_headers(viewer))
        body = res.get_json()
        assert res.status_code == 200
        assert body["total"] == 1
        assert body["items"][0]["channel_id"] == seeded.id

    def test_flags_and_severity_filter(self, client, project, viewer, auth_headers, seeded):
        res = client.get(f"{_base(project)}/decision-support/flags", headers=auth_headers(viewer))
        codes = {f["flag_code"] for f in res.get_json()["items"]}
        assert {"uptake_stalled", "activity_evidence_gap"} <= codes

        res = client.get(
            f"{_base(project)}/decision-support/flags?severity=info", headers=auth_headers(viewer),
        )
        assert all(f["severity"] == "info" for f in res.get_json()["items"])

    def test_invalid_domain_is_400(self, client, project, viewer, auth_headers):
        res = client.get(
            f"{_base(project)}/decision-support/channels?domain=marketing", headers=auth_headers(viewer),
        )
        assert res.status_code == 400
        assert "domain" in res.get_json()["details"]

    def test_invalid_date_is_400(self, client, project, viewer, auth_headers):
        res = client.get(
            f"{_base(project)}/decision-support/metrics?start=yesterday", headers=auth_headers(viewer),
        )
        assert res.status_code == 400

    def test_metrics(self, client, project, viewer, auth_headers, seeded):
        res = client.get(f"{_base(project)}/decision-support/metrics", headers=auth_headers(viewer))
        assert res.status_code == 200
        assert "uptake_lag_median_days" in res.get_json()


# ── Overrides ────────────────────────────────────────────────────────────────


class TestOverridesApi:
    def test_create_and_history(self, client, project, lead, auth_headers):
        payload = {
            "flag_code": "uptake_stalled", "entity_type": "uptake_opportunity",
            "entity_id": 3, "status": "acknowledged", "rationale": "Call scheduled",
        }
        res = client.post(
            f"{_base(project)}/decision-support/overrides", headers=auth_headers(lead), json=payload,
        )
        assert res.status_code == 201
        assert res.get_json()["entity_id"] == "3"

        res = client.get(f"{_base(project)}/decision-support/overrides/history", headers=auth_headers(lead))
        assert res.get_json()["total"] == 1

    def test_blank_rationale_is_422(self, client, project, lead, auth_headers):
        res = client.post(
            f"{_base(project)}/decision-support/overrides",
            headers=auth_headers(lead),
            json={
                "flag_code": "uptake_stalled", "entity_type": "uptake_opportunity",
                "entity_id": 3, "status": "acknowledged", "rationale": "  ",
            },
        )
        assert res.status_code == 422
        assert "rationale" in res.get_json()["details"]


# ── Compliance ───────────────────────────────────────────────────────────────


class TestComplianceApi:
    @pytest.fixture()
    def rule(self):
        r = ComplianceRule(
            code="CH-01", title="Channels defined", severity="critical",
            programme_profile="Common", logic_json=json.dumps({"check": "channels_defined"}),
        )
        db.session.add(r)
        db.session.commit()
        return r

    def test_run_check_and_patch_issue(self, client, project, lead, auth_headers, rule):
        res = client.post(f"{_base(project)}/compliance/checks", headers=auth_headers(lead), json={})
        assert res.status_code == 201
        body = res.get_json()
        assert body["check"]["status"] == "failed"
        assert len(body["check"]["issues"]) == 1
        assert body["diff"]["new_issues"] == body["snapshot"]["issue_ids"]
        issue_id = body["check"]["issues"][0]["id"]

        res = client.patch(
            f"{_base(project)}/compliance/issues/{issue_id}/status",
            headers=auth_headers(lead),
            json={"status": "false_positive", "rationale": "Channels tracked elsewhere"},
        )
        assert res.status_code == 200
        assert res.get_json()["status"] == "false_positive"

        res = client.get(f"{_base(project)}/audit", headers=auth_headers(lead))
        actions = [log["action"] for log in res.get_json()["audit_logs"]]
        assert actions == ["compliance_issue.status_change", "run_check"]

    def test_patch_without_status_is_400(self, client, project, lead, auth_headers):
        res = client.patch(
            f"{_base(project)}/compliance/issues/1/status", headers=auth_headers(lead), json={},
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_patch_unknown_issue_is_404(self, client, project, lead, auth_headers):
        res = client.patch(
            f"{_base(project)}/compliance/issues/999/status",
            headers=auth_headers(lead), json={"status": "acknowledged"},
        )
        assert res.status_code == 404

    def test_latest_before_any_run(self, client, project, viewer, auth_headers):
        res = client.get(f"{_base(project)}/compliance/checks/latest", headers=auth_headers(viewer))
        assert res.get_json() == {"check": None, "is_stale": True}

    def test_diff_before_any_run_is_404(self, client, project, viewer, auth_headers):
        res = client.get(f"{_base(project)}/compliance/diff", headers=auth_headers(viewer))
        assert res.status_code == 404


class TestRemediationAndNotesApi:
    @pytest.fixture()
    def issue_id(self, client, project, lead, auth_headers):
        db.session.add(ComplianceRule(
            code="CH-01", title="Channels defined", severity="critical",
            programme_profile="Common", logic_json=json.dumps({"check": "channels_defined"}),
        ))
        db.session.commit()
        res = client.post(f"{_base(project)}/compliance/checks", headers=auth_headers(lead), json={})
        return res.get_json()["check"]["issues"][0]["id"]

    def test_run_check_lists_pending_remediation(self, client, project, viewer, auth_headers, issue_id):
        res = client.get(f"{_base(project)}/compliance/remediations", headers=auth_headers(viewer))
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        action = body["items"][0]
        assert action["issue_id"] == issue_id
        assert action["status"] == "pending"
        assert action["description"] == "Address: Channels defined"

    def test_patch_remediation_status(self, client, project, make_member, auth_headers, issue_id):
        contributor = make_member(project, "contributor")
        action_id = client.get(
            f"{_base(project)}/compliance/remediations", headers=auth_headers(contributor),
        ).get_json()["items"][0]["id"]

        res = client.patch(
            f"{_base(project)}/compliance/remediations/{action_id}/status",
            headers=auth_headers(contributor), json={"status": "completed"},
        )
        assert res.status_code == 200
        assert res.get_json()["status"] == "completed"
        log = AuditLog.query.filter_by(action="remediation.status_change").one()
        assert log.entity_id == str(action_id)
        assert log.actor_user_id == contributor.id

    def test_viewer_cannot_patch_remediation(self, client, project, viewer, auth_headers, issue_id):
        action_id = client.get(
            f"{_base(project)}/compliance/remediations", headers=auth_headers(viewer),
        ).get_json()["items"][0]["id"]
        res = client.patch(
            f"{_base(project)}/compliance/remediations/{action_id}/status",
            headers=auth_headers(viewer), json={"status": "completed"},
        )
        assert res.status_code == 403
        assert res.get_json()["details"] == {"required": "update"}

    def test_invalid_remediation_status_is_422(self, client, project, lead, auth_headers, issue_id):
        action_id = client.get(
            f"{_base(project)}/compliance/remediations", headers=auth_headers(lead),
        ).get_json()["items"][0]["id"]
        res = client.patch(
            f"{_base(project)}/compliance/remediations/{action_id}/status",
            headers=auth_headers(lead), json={"status": "done"},
        )
        assert res.status_code == 422

    def test_manual_remediation_needs_lead(self, client, project, make_member, lead, auth_headers, issue_id):
        contributor = make_member(project, "contributor")
        url = f"{_base(project)}/compliance/issues/{issue_id}/remediations"

        res = client.post(url, headers=auth_headers(contributor), json={"description": "Update the plan"})
        assert res.status_code == 403
        assert res.get_json()["details"] == {"required": "create_remediation"}

        res = client.post(url, headers=auth_headers(lead), json={"description": "Update the plan"})
        assert res.status_code == 201
        assert res.get_json()["created_by"] == lead.id

    def test_notes_round_trip(self, client, project, make_member, viewer, auth_headers, issue_id):
        contributor = make_member(project, "contributor")
        url = f"{_base(project)}/compliance/issues/{issue_id}/notes"

        res = client.post(url, headers=auth_headers(contributor), json={"text": "Channel plan in D2.1"})
        assert res.status_code == 201
        assert res.get_json()["created_by"] == contributor.id

        res = client.get(url, headers=auth_headers(viewer))
        assert res.status_code == 200
        assert [n["text"] for n in res.get_json()["items"]] == ["Channel plan in D2.1"]

        logs = AuditLog.query.filter_by(action="compliance_issue.note_add").all()
        assert [log.entity_id for log in logs] == [str(issue_id)]

    def test_viewer_cannot_add_note(self, client, project, viewer, auth_headers, issue_id):
        res = client.post(
            f"{_base(project)}/compliance/issues/{issue_id}/notes",
            headers=auth_headers(viewer), json={"text": "Hi"},
        )
        assert res.status_code == 403

    def test_note_without_text_is_400(self, client, project, lead, auth_headers, issue_id):
        res = client.post(
            f"{_base(project)}/compliance/issues/{issue_id}/notes", headers=auth_headers(lead), json={},
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_blank_note_is_422(self, client, project, lead, auth_headers, issue_id):
        res = client.post(
            f"{_base(project)}/compliance/issues/{issue_id}/notes", headers=auth_headers(lead), json={"text": "  "},
        )
        assert res.status_code == 422
        assert "text" in res.get_json()["details"]

    def test_notes_of_unknown_issue_is_404(self, client, project, viewer, auth_headers):
        res = client.get(f"{_base(project)}/compliance/issues/999/notes", headers=auth_headers(viewer))
        assert res.status_code == 404
