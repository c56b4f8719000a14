"""
Compliance Snapshot & Diff Service.

Run lifecycle:

    idle → running → passed | warning | failed

``run_check`` evaluates the applicable rules against the project working
set, inserts one ``ComplianceIssue`` per failing rule together with a
pending ``RemediationAction``, stores a new current
``ComplianceSnapshot`` (the previous one becomes historical) and returns
the diff between the two.

Known limitation: concurrent runs for the same project are not
serialised.  Both read the same previous snapshot and the last commit
becomes current.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from cdeboard.core.exceptions import NotFoundError, ValidationError
from cdeboard.models import db
from cdeboard.models.auth import User
from cdeboard.models.compliance import (
    ISSUE_STATUSES,
    OVERRIDE_ISSUE_STATUSES,
    REMEDIATION_STATUSES,
    RULE_SEVERITIES,
    ComplianceCheck,
    ComplianceIssue,
    ComplianceSnapshot,
    IssueNote,
    RemediationAction,
)
from cdeboard.services.audit_sink import AuditEvent, AuditSink, create_diff, default_sink
from cdeboard.services.compliance_rules import evaluate_rules, issue_key
from cdeboard.services.permission_service import PermissionChecker, ensure_permission
from cdeboard.services.project_repository import ProjectRepository
from cdeboard.services.scorers import resolve_now
from cdeboard.services.settings_resolver import get_project_settings
from cdeboard.utils.helpers import whole_days_between

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS = {"critical": 10, "high": 5, "medium": 2, "low": 1}


# ═════════════════════════════════════════════════════════════════════════════
# Pure helpers
# ═════════════════════════════════════════════════════════════════════════════

def check_status(severities, warning_threshold: float) -> str:
    """Final run status from the failing issues' severities."""
    severities = list(severities)
    if not severities:
        return "passed"
    weight = sum(SEVERITY_WEIGHTS.get(s, 0) for s in severities)
    return "warning" if weight <= warning_threshold else "failed"


def compare_snapshots(previous: dict | None, current: dict) -> dict:
    """
    Diff two snapshot fingerprints (``{"issue_ids": [...], "severities": {...}}``).

    New issues keep the current order, resolved ones the previous order.
    With no previous snapshot every current issue is new.
    """
    current_ids = list(current.get("issue_ids") or [])
    if previous is None:
        return {
            "new_issues": current_ids,
            "resolved_issues": [],
            "severity_changes": [],
            "unchanged": 0,
        }

    previous_ids = list(previous.get("issue_ids") or [])
    previous_set, current_set = set(previous_ids), set(current_ids)
    old_sev = previous.get("severities") or {}
    new_sev = current.get("severities") or {}

    changes = [
        {
            "issue_id": issue_id,
            "old_severity": old_sev.get(issue_id),
            "new_severity": new_sev.get(issue_id),
        }
        for issue_id in current_ids
        if issue_id in previous_set and old_sev.get(issue_id) != new_sev.get(issue_id)
    ]
    return {
        "new_issues": [i for i in current_ids if i not in previous_set],
        "resolved_issues": [i for i in previous_ids if i not in current_set],
        "severity_changes": changes,
        "unchanged": len(previous_set & current_set),
    }


def is_check_stale(last_check_at: datetime | None, threshold_days: float, now: datetime | None = None) -> bool:
    if last_check_at is None:
        return True
    return whole_days_between(last_check_at, resolve_now(now)) > threshold_days


def _fingerprint(snapshot: ComplianceSnapshot | None) -> dict | None:
    if snapshot is None:
        return None
    return {"issue_ids": snapshot.issue_ids, "severities": snapshot.severities}


# ═════════════════════════════════════════════════════════════════════════════
# Run check
# ═════════════════════════════════════════════════════════════════════════════

def current_snapshot(project_id: int) -> ComplianceSnapshot | None:
    return (
        ComplianceSnapshot.query
        .filter_by(project_id=project_id, is_current=True)
        .order_by(ComplianceSnapshot.taken_at.desc(), ComplianceSnapshot.id.desc())
        .first()
    )


def run_check(
    project_id: int,
    actor_id: int | None,
    *,
    reporting_period: str | None = None,
    checker: PermissionChecker | None = None,
    audit_sink: AuditSink | None = None,
    repository: ProjectRepository | None = None,
    now: datetime | None = None,
) -> dict:
    """Evaluate the applicable rules and store a new current snapshot."""
    repository = repository or ProjectRepository()
    ws = repository.load(project_id)
    ensure_permission(actor_id, project_id, "run_compliance_check", checker)
    now = resolve_now(now)
    settings = get_project_settings(ws.project)

    check = ComplianceCheck(
        project_id=project_id,
        status="running",
        run_at=now,
        run_by=actor_id,
        reporting_period=reporting_period,
    )
    db.session.add(check)
    db.session.flush()

    rules = repository.applicable_rules(ws.project)
    findings = [f for f in evaluate_rules(ws, rules, now=now) if f.failed]

    issue_ids: list[str] = []
    severities: dict[str, str] = {}
    for position, finding in enumerate(findings):
        rule = finding.rule
        key = issue_key(project_id, rule.code)
        if key in severities:
            continue
        issue = ComplianceIssue(
            check_id=check.id,
            project_id=project_id,
            position=position,
            issue_key=key,
            rule_id=rule.id,
            rule_code=rule.code,
            severity=rule.severity,
            description=finding.outcome.message,
            affected_entities_json=json.dumps(finding.outcome.affected, default=str),
            remediation=rule.remediation,
        )
        db.session.add(issue)
        db.session.add(RemediationAction(
            project_id=project_id,
            check_id=check.id,
            issue=issue,
            rule_code=rule.code,
            description=f"Address: {rule.title}",
            suggestion=rule.remediation,
            status="pending",
            created_by=actor_id,
            created_at=now,
        ))
        issue_ids.append(key)
        severities[key] = rule.severity

    check.status = check_status(severities.values(), settings.compliance_warning_weight_threshold)
    check.issues_count = len(issue_ids)

    previous = current_snapshot(project_id)
    if previous is not None:
        previous.is_current = False
    snapshot = ComplianceSnapshot(
        project_id=project_id,
        check_id=check.id,
        taken_at=now,
        issue_ids_json=json.dumps(issue_ids),
        severities_json=json.dumps(severities),
        status=check.status,
        issues_count=len(issue_ids),
        is_current=True,
    )
    db.session.add(snapshot)
    db.session.commit()

    diff = compare_snapshots(_fingerprint(previous), _fingerprint(snapshot))
    logger.info(
        "Compliance check %s: %s with %d issue(s) (%d new, %d resolved)",
        check.id, check.status, check.issues_count,
        len(diff["new_issues"]), len(diff["resolved_issues"]),
        extra={"project_id": project_id, "user_id": actor_id, "check_id": check.id},
    )

    (audit_sink or default_sink()).record(AuditEvent(
        entity_type="compliance_check",
        entity_id=str(check.id),
        action="run_check",
        project_id=project_id,
        actor_id=actor_id,
        diff=create_diff(None, {
            "status": check.status,
            "issues_count": check.issues_count,
            "new_issues": diff["new_issues"],
            "resolved_issues": diff["resolved_issues"],
        }),
    ))
    return {"check": check, "snapshot": snapshot, "diff": diff}


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════

def latest_check(project_id: int, *, threshold_days: float, now: datetime | None = None) -> dict:
    check = (
        ComplianceCheck.query.filter_by(project_id=project_id)
        .order_by(ComplianceCheck.run_at.desc(), ComplianceCheck.id.desc())
        .first()
    )
    return {
        "check": check.to_dict(include_issues=True) if check else None,
        "is_stale": is_check_stale(check.run_at if check else None, threshold_days, now),
    }


def snapshot_history(project_id: int, *, limit: int = 50) -> list[ComplianceSnapshot]:
    """Snapshots newest first."""
    return (
        ComplianceSnapshot.query.filter_by(project_id=project_id)
        .order_by(ComplianceSnapshot.taken_at.desc(), ComplianceSnapshot.id.desc())
        .limit(limit)
        .all()
    )


def current_diff(project_id: int) -> dict | None:
    """Diff of the current snapshot against the one stored before it."""
    history = snapshot_history(project_id, limit=2)
    if not history:
        return None
    current = history[0]
    previous = history[1] if len(history) > 1 else None
    return {
        "current_snapshot_id": current.id,
        "previous_snapshot_id": previous.id if previous else None,
        **compare_snapshots(_fingerprint(previous), _fingerprint(current)),
    }


def list_issues(
    project_id: int,
    *,
    check_id: int | None = None,
    status: str | None = None,
    severity: str | None = None,
) -> list[ComplianceIssue]:
    """Issues of one check (the latest by default), filtered."""
    if status and status not in ISSUE_STATUSES:
        raise ValidationError(f"Unknown issue status: {status}", details={"status": status})
    if severity and severity not in RULE_SEVERITIES:
        raise ValidationError(f"Unknown severity: {severity}", details={"severity": severity})

    if check_id is None:
        latest = (
            ComplianceCheck.query.filter_by(project_id=project_id)
            .order_by(ComplianceCheck.run_at.desc(), ComplianceCheck.id.desc())
            .first()
        )
        if latest is None:
            return []
        check_id = latest.id

    q = ComplianceIssue.query.filter_by(project_id=project_id, check_id=check_id)
    if status:
        q = q.filter_by(status=status)
    if severity:
        q = q.filter_by(severity=severity)
    return q.order_by(ComplianceIssue.position).all()


def _issue_or_404(project_id: int, issue_id: int) -> ComplianceIssue:
    issue = ComplianceIssue.query.filter_by(id=issue_id, project_id=project_id).first()
    if issue is None:
        raise NotFoundError(resource="ComplianceIssue", resource_id=issue_id, project_id=project_id)
    return issue


# ═════════════════════════════════════════════════════════════════════════════
# Issue status
# ═════════════════════════════════════════════════════════════════════════════

def update_issue_status(
    project_id: int,
    issue_id: int,
    status: str,
    actor_id: int | None,
    rationale: str | None = None,
    *,
    checker: PermissionChecker | None = None,
    audit_sink: AuditSink | None = None,
    now: datetime | None = None,
) -> ComplianceIssue:
    """
    Move an issue to *status*.  Transitions are free-form; reaching
    ``not_applicable`` or ``false_positive`` is an override and needs the
    ``override_flags`` permission plus a rationale.
    """
    if status not in ISSUE_STATUSES:
        raise ValidationError(
            f"Invalid issue status: {status}",
            details={"status": f"must be one of {sorted(ISSUE_STATUSES)}"},
        )
    issue = _issue_or_404(project_id, issue_id)

    rationale = (rationale or "").strip() or None
    if status in OVERRIDE_ISSUE_STATUSES:
        ensure_permission(actor_id, project_id, "override_flags", checker)
        if rationale is None:
            raise ValidationError(
                "A rationale is required to override a compliance issue",
                details={"rationale": "required"},
            )
    else:
        ensure_permission(actor_id, project_id, "update", checker)

    before = {"status": issue.status, "status_rationale": issue.status_rationale}
    issue.status = status
    issue.status_changed_by = actor_id
    issue.status_changed_at = resolve_now(now)
    issue.status_rationale = rationale
    db.session.commit()

    logger.info(
        "Compliance issue %s: %s -> %s", issue.id, before["status"], status,
        extra={"project_id": project_id, "user_id": actor_id, "check_id": issue.check_id},
    )
    (audit_sink or default_sink()).record(AuditEvent(
        entity_type="compliance_issue",
        entity_id=str(issue.id),
        action="compliance_issue.status_change",
        project_id=project_id,
        actor_id=actor_id,
        diff=create_diff(before, {"status": issue.status, "status_rationale": issue.status_rationale}),
    ))
    return issue


# ═════════════════════════════════════════════════════════════════════════════
# Remediation actions
# ═════════════════════════════════════════════════════════════════════════════

def list_remediation_actions(
    project_id: int,
    *,
    status: str | None = None,
    issue_id: int | None = None,
) -> list[RemediationAction]:
    """Remediation actions newest first."""
    if status and status not in REMEDIATION_STATUSES:
        raise ValidationError(f"Unknown remediation status: {status}", details={"status": status})
    q = RemediationAction.query.filter_by(project_id=project_id)
    if status:
        q = q.filter_by(status=status)
    if issue_id is not None:
        q = q.filter_by(issue_id=issue_id)
    return q.order_by(RemediationAction.created_at.desc(), RemediationAction.id.desc()).all()


def create_remediation_action(
    project_id: int,
    issue_id: int,
    description: str,
    actor_id: int | None,
    *,
    assigned_to: int | None = None,
    checker: PermissionChecker | None = None,
    audit_sink: AuditSink | None = None,
    now: datetime | None = None,
) -> RemediationAction:
    """Add a manual follow-up action to an existing issue."""
    issue = _issue_or_404(project_id, issue_id)
    ensure_permission(actor_id, project_id, "create_remediation", checker)
    description = (description or "").strip()
    if not description:
        raise ValidationError("A description is required", details={"description": "required"})
    if assigned_to is not None and db.session.get(User, assigned_to) is None:
        raise ValidationError("Unknown assignee", details={"assigned_to": assigned_to})

    action = RemediationAction(
        project_id=project_id,
        check_id=issue.check_id,
        issue_id=issue.id,
        rule_code=issue.rule_code,
        description=description,
        suggestion=issue.remediation,
        status="pending",
        assigned_to=assigned_to,
        created_by=actor_id,
        created_at=resolve_now(now),
    )
    db.session.add(action)
    db.session.commit()

    logger.info(
        "Remediation action %s created for issue %s", action.id, issue.id,
        extra={"project_id": project_id, "user_id": actor_id, "check_id": issue.check_id},
    )
    (audit_sink or default_sink()).record(AuditEvent(
        entity_type="remediation_action",
        entity_id=str(action.id),
        action="remediation.create",
        project_id=project_id,
        actor_id=actor_id,
        diff=create_diff(None, {"issue_id": issue.id, "description": description, "status": "pending"}),
    ))
    return action


def update_remediation_status(
    project_id: int,
    action_id: int,
    status: str,
    actor_id: int | None,
    *,
    checker: PermissionChecker | None = None,
    audit_sink: AuditSink | None = None,
    now: datetime | None = None,
) -> RemediationAction:
    """Move a remediation action between pending, in_progress and completed."""
    if status not in REMEDIATION_STATUSES:
        raise ValidationError(
            f"Invalid remediation status: {status}",
            details={"status": f"must be one of {list(REMEDIATION_STATUSES)}"},
        )
    action = RemediationAction.query.filter_by(id=action_id, project_id=project_id).first()
    if action is None:
        raise NotFoundError(resource="RemediationAction", resource_id=action_id, project_id=project_id)
    ensure_permission(actor_id, project_id, "update", checker)

    before = action.status
    action.status = status
    action.status_changed_by = actor_id
    action.status_changed_at = resolve_now(now)
    db.session.commit()

    logger.info(
        "Remediation action %s: %s -> %s", action.id, before, status,
        extra={"project_id": project_id, "user_id": actor_id, "check_id": action.check_id},
    )
    (audit_sink or default_sink()).record(AuditEvent(
        entity_type="remediation_action",
        entity_id=str(action.id),
        action="remediation.status_change",
        project_id=project_id,
        actor_id=actor_id,
        diff=create_diff({"status": before}, {"status": status}),
    ))
    return action


# ═════════════════════════════════════════════════════════════════════════════
# Issue notes
# ═════════════════════════════════════════════════════════════════════════════

def list_issue_notes(project_id: int, issue_id: int) -> list[IssueNote]:
    """Notes of one issue, oldest first."""
    _issue_or_404(project_id, issue_id)
    return (
        IssueNote.query.filter_by(project_id=project_id, issue_id=issue_id)
        .order_by(IssueNote.created_at, IssueNote.id)
        .all()
    )


def add_issue_note(
    project_id: int,
    issue_id: int,
    text: str,
    actor_id: int | None,
    *,
    checker: PermissionChecker | None = None,
    audit_sink: AuditSink | None = None,
    now: datetime | None = None,
) -> IssueNote:
    issue = _issue_or_404(project_id, issue_id)
    ensure_permission(actor_id, project_id, "update", checker)
    text = (text or "").strip() if isinstance(text, str) else ""
    if not text:
        raise ValidationError("Note text is required", details={"text": "required"})

    note = IssueNote(
        project_id=project_id,
        issue_id=issue.id,
        text=text,
        created_by=actor_id,
        created_at=resolve_now(now),
    )
    db.session.add(note)
    db.session.commit()

    logger.info(
        "Note %s added to compliance issue %s", note.id, issue.id,
        extra={"project_id": project_id, "user_id": actor_id, "check_id": issue.check_id},
    )
    (audit_sink or default_sink()).record(AuditEvent(
        entity_type="compliance_issue",
        entity_id=str(issue.id),
        action="compliance_issue.note_add",
        project_id=project_id,
        actor_id=actor_id,
        diff=create_diff(None, {"note_id": note.id, "text": text}),
    ))
    return note
