"""
CDE Decision Support Platform
Compliance blueprint: check runs, snapshots, diffs, issues and remediation.

Endpoints:
    CHECKS    /api/v1/projects/<pid>/compliance/checks                   POST  (run check)
              /api/v1/projects/<pid>/compliance/checks/latest            GET
    SNAPSHOTS /api/v1/projects/<pid>/compliance/snapshots                GET
              /api/v1/projects/<pid>/compliance/diff                     GET
    ISSUES    /api/v1/projects/<pid>/compliance/issues                   GET   (?status=&severity=&check_id=)
              /api/v1/projects/<pid>/compliance/issues/<iid>/status      PATCH
              /api/v1/projects/<pid>/compliance/issues/<iid>/notes       GET, POST
    REMEDIATION /api/v1/projects/<pid>/compliance/remediations           GET   (?status=&issue_id=)
              /api/v1/projects/<pid>/compliance/issues/<iid>/remediations POST
              /api/v1/projects/<pid>/compliance/remediations/<aid>/status PATCH
"""

import logging

from flask import Blueprint, g, jsonify, request

from cdeboard.blueprints import json_body, request_limit
from cdeboard.middleware.permission_required import require_project_permission, require_user
from cdeboard.services import compliance_service
from cdeboard.services.settings_resolver import load_settings
from cdeboard.utils.errors import E, api_error
from cdeboard.utils.helpers import parse_int

logger = logging.getLogger(__name__)

compliance_bp = Blueprint("compliance", __name__, url_prefix="/api/v1")

_PREFIX = "/projects/<int:project_id>/compliance"


# ── Runs ─────────────────────────────────────────────────────────────────────

@compliance_bp.route(f"{_PREFIX}/checks", methods=["POST"])
@require_user
def run_check(project_id):
    data, err = json_body()
    if err:
        return err
    result = compliance_service.run_check(
        project_id, g.jwt_user_id,
        reporting_period=data.get("reporting_period"),
    )
    return jsonify({
        "check": result["check"].to_dict(include_issues=True),
        "snapshot": result["snapshot"].to_dict(),
        "diff": result["diff"],
    }), 201


@compliance_bp.route(f"{_PREFIX}/checks/latest", methods=["GET"])
@require_project_permission("read")
def latest_check(project_id):
    settings = load_settings(project_id)
    return jsonify(compliance_service.latest_check(
        project_id, threshold_days=settings.compliance_stale_days_threshold,
    ))


# ── Snapshots ────────────────────────────────────────────────────────────────

@compliance_bp.route(f"{_PREFIX}/snapshots", methods=["GET"])
@require_project_permission("read")
def list_snapshots(project_id):
    rows = compliance_service.snapshot_history(project_id, limit=request_limit(50, 200))
    return jsonify({"items": [s.to_dict() for s in rows], "total": len(rows)})


@compliance_bp.route(f"{_PREFIX}/diff", methods=["GET"])
@require_project_permission("read")
def current_diff(project_id):
    diff = compliance_service.current_diff(project_id)
    if diff is None:
        return api_error(E.NOT_FOUND, "No compliance snapshot yet")
    return jsonify(diff)


# ── Issues ───────────────────────────────────────────────────────────────────

@compliance_bp.route(f"{_PREFIX}/issues", methods=["GET"])
@require_project_permission("read")
def list_issues(project_id):
    raw_check = request.args.get("check_id")
    check_id = parse_int(raw_check)
    if raw_check and check_id is None:
        return api_error(E.VALIDATION_INVALID, "check_id must be an integer")

    issues = compliance_service.list_issues(
        project_id,
        check_id=check_id,
        status=request.args.get("status") or None,
        severity=request.args.get("severity") or None,
    )
    return jsonify({"items": [i.to_dict() for i in issues], "total": len(issues)})


@compliance_bp.route(f"{_PREFIX}/issues/<int:issue_id>/status", methods=["PATCH"])
@require_user
def update_issue_status(project_id, issue_id):
    data, err = json_body()
    if err:
        return err
    status = data.get("status")
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    issue = compliance_service.update_issue_status(
        project_id, issue_id, status, g.jwt_user_id, data.get("rationale"),
    )
    return jsonify(issue.to_dict())


@compliance_bp.route(f"{_PREFIX}/issues/<int:issue_id>/notes", methods=["GET"])
@require_project_permission("read")
def list_issue_notes(project_id, issue_id):
    notes = compliance_service.list_issue_notes(project_id, issue_id)
    return jsonify({"items": [n.to_dict() for n in notes], "total": len(notes)})


@compliance_bp.route(f"{_PREFIX}/issues/<int:issue_id>/notes", methods=["POST"])
@require_user
def add_issue_note(project_id, issue_id):
    data, err = json_body()
    if err:
        return err
    if "text" not in data:
        return api_error(E.VALIDATION_REQUIRED, "text is required")
    note = compliance_service.add_issue_note(project_id, issue_id, data["text"], g.jwt_user_id)
    return jsonify(note.to_dict()), 201


# ── Remediation ──────────────────────────────────────────────────────────────

@compliance_bp.route(f"{_PREFIX}/remediations", methods=["GET"])
@require_project_permission("read")
def list_remediations(project_id):
    raw_issue = request.args.get("issue_id")
    issue_id = parse_int(raw_issue)
    if raw_issue and issue_id is None:
        return api_error(E.VALIDATION_INVALID, "issue_id must be an integer")

    actions = compliance_service.list_remediation_actions(
        project_id, status=request.args.get("status") or None, issue_id=issue_id,
    )
    return jsonify({"items": [a.to_dict() for a in actions], "total": len(actions)})


@compliance_bp.route(f"{_PREFIX}/issues/<int:issue_id>/remediations", methods=["POST"])
@require_user
def create_remediation(project_id, issue_id):
    data, err = json_body()
    if err:
        return err
    if not data.get("description"):
        return api_error(E.VALIDATION_REQUIRED, "description is required")
    action = compliance_service.create_remediation_action(
        project_id, issue_id, data["description"], g.jwt_user_id,
        assigned_to=parse_int(data.get("assigned_to")),
    )
    return jsonify(action.to_dict()), 201


@compliance_bp.route(f"{_PREFIX}/remediations/<int:action_id>/status", methods=["PATCH"])
@require_user
def update_remediation_status(project_id, action_id):
    data, err = json_body()
    if err:
        return err
    status = data.get("status")
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    action = compliance_service.update_remediation_status(
        project_id, action_id, status, g.jwt_user_id,
    )
    return jsonify(action.to_dict())
