"""
CDE Decision Support Platform
Decision Support blueprint: settings, scorers, flags and overrides.

Endpoints:
    SETTINGS   /api/v1/projects/<pid>/decision-support/settings                   GET, PUT
    CHANNELS   /api/v1/projects/<pid>/decision-support/channels                   GET
    GROUPS     /api/v1/projects/<pid>/decision-support/stakeholders               GET
    OBJECTIVES /api/v1/projects/<pid>/decision-support/objectives/health          GET
               /api/v1/projects/<pid>/decision-support/objectives/health/recompute POST
               /api/v1/projects/<pid>/decision-support/objectives/diagnostics     GET
    METRICS    /api/v1/projects/<pid>/decision-support/metrics                    GET
    FLAGS      /api/v1/projects/<pid>/decision-support/flags                      GET
    OVERRIDES  /api/v1/projects/<pid>/decision-support/overrides                  POST
               /api/v1/projects/<pid>/decision-support/overrides/history          GET

Channel / stakeholder / metric / flag views accept ``domain``,
``stakeholder_group_id``, ``start`` and ``end`` query params.
"""

import logging

from flask import Blueprint, g, jsonify, request

from cdeboard.blueprints import json_body, view_filters
from cdeboard.middleware.permission_required import require_project_permission, require_user
from cdeboard.services import decision_support_service as ds
from cdeboard.services.override_service import override_history, record_override
from cdeboard.services.settings_resolver import load_settings, update_settings

logger = logging.getLogger(__name__)

decision_support_bp = Blueprint("decision_support", __name__, url_prefix="/api/v1")

_PREFIX = "/projects/<int:project_id>/decision-support"


# ═══════════════════════════════════════════════════════════════════════════
#  SETTINGS
# ═══════════════════════════════════════════════════════════════════════════

@decision_support_bp.route(f"{_PREFIX}/settings", methods=["GET"])
@require_project_permission("read")
def get_settings(project_id):
    return jsonify(load_settings(project_id).to_dict())


@decision_support_bp.route(f"{_PREFIX}/settings", methods=["PUT"])
@require_user
def put_settings(project_id):
    data, err = json_body()
    if err:
        return err
    settings = update_settings(project_id, data, g.jwt_user_id)
    return jsonify(settings.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  SCORERS
# ═══════════════════════════════════════════════════════════════════════════

@decision_support_bp.route(f"{_PREFIX}/channels", methods=["GET"])
@require_project_permission("read")
def channel_effectiveness(project_id):
    filters, start, end, err = view_filters()
    if err:
        return err
    rows = ds.get_channel_effectiveness(project_id, filters=filters, start=start, end=end)
    return jsonify({"items": rows, "total": len(rows)})


@decision_support_bp.route(f"{_PREFIX}/stakeholders", methods=["GET"])
@require_project_permission("read")
def stakeholder_responsiveness(project_id):
    filters, start, end, err = view_filters()
    if err:
        return err
    rows = ds.get_stakeholder_responsiveness(project_id, filters=filters, start=start, end=end)
    return jsonify({"items": rows, "total": len(rows)})


@decision_support_bp.route(f"{_PREFIX}/objectives/health", methods=["GET"])
@require_project_permission("read")
def objective_health(project_id):
    rows = ds.get_objective_health(project_id)
    return jsonify({"items": rows, "total": len(rows)})


@decision_support_bp.route(f"{_PREFIX}/objectives/health/recompute", methods=["POST"])
@require_user
def recompute_objective_health(project_id):
    rows = ds.recompute_objective_statuses(project_id, g.jwt_user_id)
    return jsonify({"items": rows, "total": len(rows)})


@decision_support_bp.route(f"{_PREFIX}/objectives/diagnostics", methods=["GET"])
@require_project_permission("read")
def objective_diagnostics(project_id):
    rows = ds.get_objective_diagnostics(project_id)
    return jsonify({"items": rows, "total": len(rows)})


@decision_support_bp.route(f"{_PREFIX}/metrics", methods=["GET"])
@require_project_permission("read")
def derived_metrics(project_id):
    filters, start, end, err = view_filters()
    if err:
        return err
    return jsonify(ds.get_derived_metrics(project_id, filters=filters, start=start, end=end))


# ═══════════════════════════════════════════════════════════════════════════
#  FLAGS & OVERRIDES
# ═══════════════════════════════════════════════════════════════════════════

@decision_support_bp.route(f"{_PREFIX}/flags", methods=["GET"])
@require_project_permission("read")
def list_flags(project_id):
    filters, start, end, err = view_filters()
    if err:
        return err
    flags = ds.get_flags(project_id, filters=filters, start=start, end=end)

    severity = request.args.get("severity")
    if severity:
        flags = [f for f in flags if f["severity"] == severity]
    return jsonify({"items": flags, "total": len(flags)})


@decision_support_bp.route(f"{_PREFIX}/overrides", methods=["POST"])
@require_user
def create_override(project_id):
    data, err = json_body()
    if err:
        return err
    override = record_override(
        project_id,
        data.get("flag_code"),
        data.get("entity_type"),
        data.get("entity_id"),
        data.get("status"),
        data.get("rationale"),
        g.jwt_user_id,
        period=data.get("period"),
    )
    return jsonify(override.to_dict()), 201


@decision_support_bp.route(f"{_PREFIX}/overrides/history", methods=["GET"])
@require_project_permission("read")
def list_override_history(project_id):
    rows = override_history(
        project_id,
        flag_code=request.args.get("flag_code"),
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id"),
    )
    return jsonify({"items": [r.to_dict() for r in rows], "total": len(rows)})
