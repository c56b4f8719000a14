"""Project objective model.

``status`` and ``warnings_json`` are a cache written back by the
decision-support engine; every other column is owned by the UI.
"""

import json
from datetime import datetime, timezone

from cdeboard.models import db

OBJECTIVE_STATUSES = ("on_track", "at_risk", "needs_kpis", "needs_activities", "no_data")
OBJECTIVE_SOURCES = {"manual", "library", "strategy"}


class Objective(db.Model):
    __tablename__ = "objectives"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    domain = db.Column(db.String(20), nullable=False, default="communication")
    priority = db.Column(db.String(10), nullable=False, default="medium", comment="high | medium | low")
    source = db.Column(db.String(20), nullable=False, default="manual", comment="manual | library | strategy")

    kpis_linked_count = db.Column(db.Integer, nullable=False, default=0)
    activities_linked_count = db.Column(db.Integer, nullable=False, default=0)

    # Derived cache
    status = db.Column(
        db.String(20), nullable=False, default="no_data",
        comment="on_track | at_risk | needs_kpis | needs_activities | no_data",
    )
    warnings_json = db.Column(db.Text, nullable=False, default="[]")
    status_evaluated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def warnings(self) -> list[str]:
        try:
            return json.loads(self.warnings_json or "[]")
        except (json.JSONDecodeError, TypeError):
            return []

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "domain": self.domain,
            "priority": self.priority,
            "source": self.source,
            "kpis_linked_count": self.kpis_linked_count,
            "activities_linked_count": self.activities_linked_count,
            "status": self.status,
            "warnings": self.warnings,
            "status_evaluated_at": (
                self.status_evaluated_at.isoformat() if self.status_evaluated_at else None
            ),
        }
