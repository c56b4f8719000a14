"""
Compliance Rule Registry.

Each ``ComplianceRule`` names a check in ``logic_json["check"]`` (falling
back to a module-derived check from ``applies_to``).  A check inspects the
project working set and returns a ``CheckOutcome``; parameters come from
the same ``logic_json`` object.

Evaluation is deterministic: the same working set always produces the
same outcomes, and a failing rule always maps to the same ``issue_key``.

Usage:
    from cdeboard.services.compliance_rules import evaluate_rules
    findings = evaluate_rules(working_set, rules, now=now)
    # -> [RuleFinding(rule=..., outcome=CheckOutcome(passed=False, ...)), ...]
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from cdeboard.models.compliance import ComplianceRule
from cdeboard.services.metric_aggregator import EVIDENCE_SCORE_ANY, activity_evidence_scores
from cdeboard.services.project_repository import ProjectWorkingSet
from cdeboard.utils.helpers import whole_days_between

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Data Classes
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class CheckOutcome:
    passed: bool
    message: str = ""
    affected: list[dict] = field(default_factory=list)


@dataclass
class RuleFinding:
    rule: ComplianceRule
    check_name: str
    outcome: CheckOutcome

    @property
    def failed(self) -> bool:
        return not self.outcome.passed


def issue_key(project_id: int, rule_code: str) -> str:
    """Stable issue identity: same project + rule -> same key on every run."""
    return hashlib.sha256(f"{project_id}:{rule_code}".encode()).hexdigest()[:16]


def _entity(entity_type: str, row, name_attr: str = "title") -> dict:
    return {"entity_type": entity_type, "entity_id": row.id, "name": getattr(row, name_attr, None)}


def _int_param(params: dict, key: str, default: int) -> int:
    value = params.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


# ═════════════════════════════════════════════════════════════════════════════
# Registry
# ═════════════════════════════════════════════════════════════════════════════

CheckFn = Callable[[ProjectWorkingSet, dict, datetime], CheckOutcome]

CHECKS: dict[str, CheckFn] = {}

# applies_to module -> check used when the rule's logic names none
MODULE_CHECKS: dict[str, str] = {
    "objectives": "objectives_defined",
    "kpis": "objectives_have_kpis",
    "stakeholders": "stakeholders_identified",
    "channels": "channels_defined",
    "activities": "activities_have_evidence",
    "evidence": "activities_have_evidence",
    "indicators": "indicators_have_targets",
    "monitoring": "indicators_reported",
    "exploitation": "exploitation_planned",
    "uptake": "exploitation_planned",
}


def register(name: str):
    def decorator(fn: CheckFn) -> CheckFn:
        CHECKS[name] = fn
        return fn
    return decorator


def resolve_check_name(rule: ComplianceRule) -> str | None:
    name = rule.logic.get("check")
    if isinstance(name, str) and name:
        return name
    return MODULE_CHECKS.get((rule.applies_to or "").strip().lower())


# ═════════════════════════════════════════════════════════════════════════════
# Checks
# ═════════════════════════════════════════════════════════════════════════════

@register("objectives_defined")
def objectives_defined(ws, params, now) -> CheckOutcome:
    minimum = _int_param(params, "min_count", 1)
    count = len(ws.objectives)
    if count >= minimum:
        return CheckOutcome(True)
    return CheckOutcome(False, f"{count} objective(s) defined, at least {minimum} required")


@register("objectives_have_kpis")
def objectives_have_kpis(ws, params, now) -> CheckOutcome:
    with_indicators = {i.objective_id for i in ws.indicators if i.objective_id is not None}
    missing = [
        o for o in ws.objectives
        if not o.kpis_linked_count and o.id not in with_indicators
    ]
    if not missing:
        return CheckOutcome(True)
    return CheckOutcome(
        False,
        f"{len(missing)} objective(s) have no KPIs linked",
        [_entity("objective", o) for o in missing],
    )


@register("stakeholders_identified")
def stakeholders_identified(ws, params, now) -> CheckOutcome:
    minimum = _int_param(params, "min_count", 1)
    count = len(ws.stakeholder_groups)
    if count >= minimum:
        return CheckOutcome(True)
    return CheckOutcome(False, f"{count} stakeholder group(s) identified, at least {minimum} required")


@register("channels_defined")
def channels_defined(ws, params, now) -> CheckOutcome:
    minimum = _int_param(params, "min_count", 1)
    count = len(ws.channels)
    if count >= minimum:
        return CheckOutcome(True)
    return CheckOutcome(False, f"{count} channel(s) defined, at least {minimum} required")


@register("activities_have_evidence")
def activities_have_evidence(ws, params, now) -> CheckOutcome:
    """Completed activities (optionally limited to some domains) need evidence."""
    min_score = _int_param(params, "min_score", EVIDENCE_SCORE_ANY)
    domains = params.get("domains")
    domains = set(domains) if isinstance(domains, list) and domains else None

    scores = activity_evidence_scores(ws)
    lacking = [
        a for a in ws.activities
        if a.status == "completed"
        and (domains is None or a.domain in domains)
        and scores[a.id] < min_score
    ]
    if not lacking:
        return CheckOutcome(True)
    return CheckOutcome(
        False,
        f"{len(lacking)} completed activit{'y' if len(lacking) == 1 else 'ies'} "
        f"below evidence score {min_score}",
        [_entity("activity", a) for a in lacking],
    )


@register("indicators_have_targets")
def indicators_have_targets(ws, params, now) -> CheckOutcome:
    missing = [i for i in ws.indicators if i.target is None]
    if not missing:
        return CheckOutcome(True)
    return CheckOutcome(
        False,
        f"{len(missing)} indicator(s) have no target",
        [_entity("indicator", i, "name") for i in missing],
    )


@register("indicators_reported")
def indicators_reported(ws, params, now) -> CheckOutcome:
    """Every indicator has a value; with ``max_age_days`` the latest must be recent."""
    max_age = params.get("max_age_days")
    if isinstance(max_age, bool) or not isinstance(max_age, (int, float)):
        max_age = None

    unreported = []
    for indicator in ws.indicators:
        values = ws.values_for(indicator.id)
        if not values:
            unreported.append(indicator)
            continue
        if max_age is not None:
            latest = values[-1].recorded_at
            if latest is None or whole_days_between(latest, now) > max_age:
                unreported.append(indicator)
    if not unreported:
        return CheckOutcome(True)
    suffix = f" in the last {max_age:g} days" if max_age is not None else ""
    return CheckOutcome(
        False,
        f"{len(unreported)} indicator(s) not reported{suffix}",
        [_entity("indicator", i, "name") for i in unreported],
    )


@register("exploitation_planned")
def exploitation_planned(ws, params, now) -> CheckOutcome:
    minimum = _int_param(params, "min_count", 1)
    count = sum(1 for a in ws.activities if a.domain == "exploitation")
    if count >= minimum:
        return CheckOutcome(True)
    return CheckOutcome(False, f"{count} exploitation activities planned, at least {minimum} required")


# ═════════════════════════════════════════════════════════════════════════════
# Evaluation
# ═════════════════════════════════════════════════════════════════════════════

def evaluate_rules(
    ws: ProjectWorkingSet,
    rules: list[ComplianceRule],
    *,
    now: datetime,
) -> list[RuleFinding]:
    """Run every rule with a known check, in the given order."""
    findings: list[RuleFinding] = []
    for rule in rules:
        name = resolve_check_name(rule)
        check = CHECKS.get(name) if name else None
        if check is None:
            logger.info(
                "Skipping rule %s: unknown check %r", rule.code, name,
                extra={"project_id": ws.project_id},
            )
            continue
        outcome = check(ws, rule.logic, now)
        if not outcome.message:
            outcome.message = rule.description or rule.title
        findings.append(RuleFinding(rule=rule, check_name=name, outcome=outcome))
    return findings
