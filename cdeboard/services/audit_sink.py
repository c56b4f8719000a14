"""
Audit sink: best-effort recorder for engine state changes.

Every mutating engine operation describes what happened as an
``AuditEvent`` and hands it to an ``AuditSink``.  The sink is injected
(``DatabaseAuditSink`` by default) and must never raise: a failed audit
write is logged at WARNING and the primary operation carries on.

Usage:
    sink = DatabaseAuditSink()
    sink.record(AuditEvent(
        entity_type="flag_override", entity_id="17", action="create",
        project_id=3, actor_id=5, diff=create_diff(None, override.to_dict()),
    ))
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from cdeboard.models import db
from cdeboard.models.audit import AuditLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    entity_type: str
    entity_id: str
    action: str
    project_id: int | None = None
    actor_id: int | None = None
    diff: dict = field(default_factory=dict)


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> AuditLog | None:
        ...


class DatabaseAuditSink:
    """Writes one ``AuditLog`` row per event, in its own commit."""

    def record(self, event: AuditEvent) -> AuditLog | None:
        try:
            log = AuditLog(
                project_id=event.project_id,
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action,
                actor_user_id=event.actor_id,
                diff_json=json.dumps(event.diff or {}, default=str),
            )
            db.session.add(log)
            db.session.commit()
            return log
        except Exception:
            db.session.rollback()
            logger.warning(
                "Audit write failed for %s %s/%s",
                event.action, event.entity_type, event.entity_id,
                exc_info=True,
                extra={
                    "project_id": event.project_id,
                    "entity_type": event.entity_type,
                    "entity_id": event.entity_id,
                    "event_type": "audit_write_failed",
                },
            )
            return None


def default_sink() -> AuditSink:
    return DatabaseAuditSink()


def create_diff(old: dict | None, new: dict | None) -> dict[str, Any]:
    """
    Field-level change set between two snapshots.

    - old missing → ``{"new": new}``
    - new missing → ``{"old": old}``
    - otherwise   → ``{field: {"old": ..., "new": ...}}`` for changed fields
    """
    if old is None:
        return {"new": new}
    if new is None:
        return {"old": old}

    diff: dict[str, Any] = {}
    for key in {**old, **new}:
        if old.get(key) != new.get(key):
            diff[key] = {"old": old.get(key), "new": new.get(key)}
    return diff


def list_audit_entries(
    project_id: int,
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
    limit: int = 100,
) -> list[AuditLog]:
    """Audit rows for a project, newest first."""
    q = AuditLog.query.filter_by(project_id=project_id)
    if entity_type:
        q = q.filter_by(entity_type=entity_type)
    if entity_id is not None:
        q = q.filter_by(entity_id=str(entity_id))
    return q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
