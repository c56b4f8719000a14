"""
CDE Decision Support Platform
Monitoring models: indicators, their period values, and evidence.

Evidence is linked polymorphically (``entity_type`` + ``entity_id``) so
one item can back several activities and indicators.
"""

from datetime import datetime, timezone

from cdeboard.models import db

INDICATOR_CATEGORIES = {"output", "outcome", "reach", "uptake", "sustainability"}
EVIDENCE_TYPES = {
    "photo", "video", "document", "screenshot",
    "dataset", "agreement", "report", "other",
}
EVIDENCE_LINK_ENTITY_TYPES = {"activity", "indicator"}


def _utcnow():
    return datetime.now(timezone.utc)


class Indicator(db.Model):
    __tablename__ = "indicators"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(300), nullable=False)
    category = db.Column(
        db.String(30), nullable=False, default="output",
        comment="output | outcome | reach | uptake | sustainability",
    )
    domain = db.Column(db.String(20), nullable=True, comment="communication | dissemination | exploitation")
    unit = db.Column(db.String(50), nullable=True)
    baseline = db.Column(db.Float, nullable=True)
    target = db.Column(db.Float, nullable=True)
    locked = db.Column(db.Boolean, nullable=False, default=False)

    channel_id = db.Column(
        db.Integer, db.ForeignKey("channels.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    objective_id = db.Column(
        db.Integer, db.ForeignKey("objectives.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "category": self.category,
            "domain": self.domain,
            "unit": self.unit,
            "baseline": self.baseline,
            "target": self.target,
            "locked": self.locked,
            "channel_id": self.channel_id,
            "objective_id": self.objective_id,
        }


class IndicatorValue(db.Model):
    __tablename__ = "indicator_values"
    __table_args__ = (
        db.Index("idx_indicator_value_recorded", "project_id", "recorded_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    indicator_id = db.Column(
        db.Integer, db.ForeignKey("indicators.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    period = db.Column(db.String(20), nullable=True, comment="Reporting period key, e.g. 2025-Q1 / M18")
    value = db.Column(db.Float, nullable=True)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)


class EvidenceItem(db.Model):
    __tablename__ = "evidence_items"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    type = db.Column(
        db.String(30), nullable=False, default="other",
        comment="photo | video | document | screenshot | dataset | agreement | report | other",
    )
    evidence_date = db.Column(db.Date, nullable=True)
    source_url = db.Column(db.String(500), nullable=True)
    context = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def has_complete_metadata(self) -> bool:
        """Date plus at least one of source / context."""
        return bool(self.evidence_date and (self.source_url or self.context))


class EvidenceLink(db.Model):
    __tablename__ = "evidence_links"
    __table_args__ = (
        db.Index("idx_evidence_link_entity", "entity_type", "entity_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    evidence_id = db.Column(
        db.Integer, db.ForeignKey("evidence_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    entity_type = db.Column(db.String(20), nullable=False, comment="activity | indicator")
    entity_id = db.Column(db.String(50), nullable=False)

    evidence = db.relationship("EvidenceItem", lazy="joined")
