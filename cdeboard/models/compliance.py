"""
CDE Decision Support Platform
Compliance domain models.

Models:
    - ComplianceRule:     static, profile-scoped rule with a declarative check
    - ComplianceCheck:    one "run check" execution and its final status
    - ComplianceIssue:    one failing rule inside a check
    - ComplianceSnapshot: issue-id / severity fingerprint of a check, used for diffs
    - RemediationAction:  follow-up task for one issue ("Address: <rule>")
    - IssueNote:          append-only free-text note on an issue

Business rules:
    - An issue's rule, severity and description are written once at insert.
      Only the status_* columns change afterwards.
    - Exactly one snapshot per project is ``is_current``; the previous one is
      flipped to historical when a new run is stored.
    - Every issue inserted by a run gets one pending remediation action.
"""

import json
from datetime import datetime, timezone

from cdeboard.models import db

# ── Constants ────────────────────────────────────────────────────────────────

RULE_SEVERITIES = ("critical", "high", "medium", "low")
CHECK_STATUSES = ("idle", "running", "passed", "warning", "failed")
ISSUE_STATUSES = frozenset({
    "open", "acknowledged", "in_progress", "resolved",
    "not_applicable", "false_positive",
})
# Reaching these is an explicit override of the rule outcome.
OVERRIDE_ISSUE_STATUSES = frozenset({"not_applicable", "false_positive"})
REMEDIATION_STATUSES = ("pending", "in_progress", "completed")
COMMON_PROFILE = "Common"


def _utcnow():
    return datetime.now(timezone.utc)


def _loads(raw, fallback):
    try:
        return json.loads(raw) if raw else fallback
    except (json.JSONDecodeError, TypeError):
        return fallback


class ComplianceRule(db.Model):
    __tablename__ = "compliance_rules"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    severity = db.Column(
        db.String(10), nullable=False, default="medium",
        comment="critical | high | medium | low",
    )
    scope = db.Column(db.String(50), nullable=True, comment="project | activity | indicator | ...")
    applies_to = db.Column(db.String(50), nullable=True, comment="Module the rule inspects")
    programme_profile = db.Column(db.String(50), nullable=False, default=COMMON_PROFILE)
    logic_json = db.Column(db.Text, nullable=True, comment='{"check": "...", ...params}')
    remediation = db.Column(db.Text, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def logic(self) -> dict:
        value = _loads(self.logic_json, {})
        return value if isinstance(value, dict) else {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "title": self.title,
            "severity": self.severity,
            "scope": self.scope,
            "applies_to": self.applies_to,
            "programme_profile": self.programme_profile,
            "logic": self.logic,
            "remediation": self.remediation,
            "active": self.active,
        }


class ComplianceCheck(db.Model):
    __tablename__ = "compliance_checks"
    __table_args__ = (
        db.Index("idx_compliance_check_project_run", "project_id", "run_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    status = db.Column(
        db.String(10), nullable=False, default="idle",
        comment="idle | running | passed | warning | failed",
    )
    run_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    run_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    issues_count = db.Column(db.Integer, nullable=False, default=0)
    reporting_period = db.Column(db.String(20), nullable=True)

    issues = db.relationship(
        "ComplianceIssue",
        backref="check",
        lazy="selectin",
        order_by="ComplianceIssue.position",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_issues: bool = False) -> dict:
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "status": self.status,
            "run_at": self.run_at.isoformat() if self.run_at else None,
            "run_by": self.run_by,
            "issues_count": self.issues_count,
            "reporting_period": self.reporting_period,
        }
        if include_issues:
            result["issues"] = [i.to_dict() for i in self.issues]
        return result


class ComplianceIssue(db.Model):
    __tablename__ = "compliance_issues"

    id = db.Column(db.Integer, primary_key=True)
    check_id = db.Column(
        db.Integer, db.ForeignKey("compliance_checks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    issue_key = db.Column(db.String(16), nullable=False, index=True, comment="Stable across runs")

    # Immutable content
    rule_id = db.Column(
        db.Integer, db.ForeignKey("compliance_rules.id", ondelete="SET NULL"), nullable=True,
    )
    rule_code = db.Column(db.String(50), nullable=False)
    severity = db.Column(db.String(10), nullable=False)
    description = db.Column(db.Text, nullable=False)
    affected_entities_json = db.Column(db.Text, nullable=True)
    remediation = db.Column(db.Text, nullable=True)

    # Mutable status
    status = db.Column(db.String(20), nullable=False, default="open")
    status_changed_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status_rationale = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def affected_entities(self) -> list:
        return _loads(self.affected_entities_json, [])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "check_id": self.check_id,
            "issue_key": self.issue_key,
            "rule_id": self.rule_id,
            "rule_code": self.rule_code,
            "severity": self.severity,
            "description": self.description,
            "affected_entities": self.affected_entities,
            "remediation": self.remediation,
            "status": self.status,
            "status_changed_by": self.status_changed_by,
            "status_changed_at": (
                self.status_changed_at.isoformat() if self.status_changed_at else None
            ),
            "status_rationale": self.status_rationale,
        }


class ComplianceSnapshot(db.Model):
    """Issue fingerprint of one check; ``issue_ids`` keeps evaluation order."""

    __tablename__ = "compliance_snapshots"
    __table_args__ = (
        db.Index("idx_compliance_snapshot_current", "project_id", "is_current"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    check_id = db.Column(
        db.Integer, db.ForeignKey("compliance_checks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    taken_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    issue_ids_json = db.Column(db.Text, nullable=False, default="[]")
    severities_json = db.Column(db.Text, nullable=False, default="{}")
    status = db.Column(db.String(10), nullable=False)
    issues_count = db.Column(db.Integer, nullable=False, default=0)
    is_current = db.Column(db.Boolean, nullable=False, default=True)

    @property
    def issue_ids(self) -> list[str]:
        return _loads(self.issue_ids_json, [])

    @property
    def severities(self) -> dict[str, str]:
        return _loads(self.severities_json, {})

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "check_id": self.check_id,
            "taken_at": self.taken_at.isoformat() if self.taken_at else None,
            "issue_ids": self.issue_ids,
            "severities": self.severities,
            "status": self.status,
            "issues_count": self.issues_count,
            "is_current": self.is_current,
        }


class RemediationAction(db.Model):
    __tablename__ = "remediation_actions"
    __table_args__ = (
        db.Index("idx_remediation_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    check_id = db.Column(
        db.Integer, db.ForeignKey("compliance_checks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    issue_id = db.Column(
        db.Integer, db.ForeignKey("compliance_issues.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    rule_code = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text, nullable=False)
    suggestion = db.Column(db.Text, nullable=True, comment="Copied from the rule's remediation text")
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | in_progress | completed",
    )
    assigned_to = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    status_changed_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    issue = db.relationship("ComplianceIssue", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "check_id": self.check_id,
            "issue_id": self.issue_id,
            "issue_description": self.issue.description if self.issue else None,
            "rule_code": self.rule_code,
            "description": self.description,
            "suggestion": self.suggestion,
            "status": self.status,
            "assigned_to": self.assigned_to,
            "created_by": self.created_by,
            "status_changed_by": self.status_changed_by,
            "status_changed_at": (
                self.status_changed_at.isoformat() if self.status_changed_at else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class IssueNote(db.Model):
    """Notes are never edited or deleted once written."""

    __tablename__ = "issue_notes"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    issue_id = db.Column(
        db.Integer, db.ForeignKey("compliance_issues.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    text = db.Column(db.Text, nullable=False)
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "text": self.text,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
