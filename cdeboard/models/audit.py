"""
CDE Decision Support Platform
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for engine state changes.
"""

import json
from datetime import datetime, timezone

from cdeboard.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "flag_override", "compliance_check", "compliance_issue",
    "objective", "project_settings", "remediation_action", "issue_note",
}

AUDIT_ACTIONS = {
    "create",
    "update",
    "run_check",
    "compliance_issue.status_change",
    "compliance_issue.note_add",
    "remediation.create",
    "remediation.status_change",
    "objective.recompute_status",
    "settings.update",
}


class AuditLog(db.Model):
    """
    Immutable audit trail row.

    ``diff_json`` carries the {field: {old, new}} change set produced by
    ``create_diff``.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="flag_override | compliance_check | compliance_issue | remediation_action | issue_note | objective | project_settings",
    )
    entity_id = db.Column(db.String(64), nullable=False)

    action = db.Column(db.String(60), nullable=False)
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def diff(self) -> dict:
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"
