"""
Flag override model.

A FlagOverride records a human decision against an auto-generated
recommendation flag.

Business rules:
- Records are never updated or deleted; every decision appends a row.
- The most recent row for (project, flag_code, entity_type, entity_id)
  is the current state. Ties on created_at are broken by id.
- rationale is mandatory and never blank.

entity_id is stored as String(64), serialised with str(), in line with
the audit table's polymorphic reference.
"""

from datetime import datetime, timezone

from cdeboard.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

OVERRIDE_STATUSES = frozenset({
    "open", "acknowledged", "not_applicable", "false_positive", "resolved",
})

FLAG_CODES = frozenset({
    "stakeholder_over_targeted",
    "stakeholder_low_response",
    "channel_inefficient",
    "uptake_stalled",
    "activity_evidence_gap",
    "asset_no_exploitation",
    "objective_blocked",
    "objective_at_risk",
})

FLAG_ENTITY_TYPES = frozenset({
    "stakeholder_group", "channel", "uptake_opportunity",
    "activity", "asset", "objective",
})


class FlagOverride(db.Model):
    __tablename__ = "flag_overrides"
    __table_args__ = (
        db.Index(
            "idx_flag_override_key",
            "project_id", "flag_code", "entity_type", "entity_id",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    flag_code = db.Column(db.String(50), nullable=False)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)
    period = db.Column(db.String(20), nullable=True, comment="Optional reporting period the decision applies to")

    status = db.Column(
        db.String(20), nullable=False,
        comment="open | acknowledged | not_applicable | false_positive | resolved",
    )
    rationale = db.Column(db.Text, nullable=False)

    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.flag_code, self.entity_type, self.entity_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "flag_code": self.flag_code,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "period": self.period,
            "status": self.status,
            "rationale": self.rationale,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return (
            f"<FlagOverride {self.id}: {self.flag_code} "
            f"{self.entity_type}/{self.entity_id} → {self.status}>"
        )
