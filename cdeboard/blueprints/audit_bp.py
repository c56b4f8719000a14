"""
CDE Decision Support Platform
Audit blueprint.

Endpoints:
    GET  /api/v1/projects/<pid>/audit   (?entity_type=&entity_id=&limit=)
         Project audit trail, newest first.
"""

from flask import Blueprint, jsonify, request

from cdeboard.blueprints import request_limit
from cdeboard.middleware.permission_required import require_project_permission
from cdeboard.services.audit_sink import list_audit_entries

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")


@audit_bp.route("/projects/<int:project_id>/audit", methods=["GET"])
@require_project_permission("read")
def list_audit_logs(project_id):
    rows = list_audit_entries(
        project_id,
        entity_type=request.args.get("entity_type") or None,
        entity_id=request.args.get("entity_id") or None,
        limit=request_limit(100, 500),
    )
    return jsonify({"audit_logs": [r.to_dict() for r in rows], "total": len(rows)})
