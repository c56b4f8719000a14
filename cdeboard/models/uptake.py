"""Uptake models: exploitation opportunities and signed agreements."""

from datetime import datetime, timezone

from cdeboard.models import db

UPTAKE_STAGES = ("identified", "engaged", "negotiating", "agreed", "implemented", "closed")
# Stages that count as exploitation-stage progression.
EXPLOITATION_STAGES = frozenset({"negotiating", "agreed", "implemented", "closed"})


def _utcnow():
    return datetime.now(timezone.utc)


class UptakeOpportunity(db.Model):
    __tablename__ = "uptake_opportunities"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    stage = db.Column(
        db.String(20), nullable=False, default="identified",
        comment="identified | engaged | negotiating | agreed | implemented | closed",
    )
    target_sector = db.Column(db.String(100), nullable=True)
    asset_id = db.Column(
        db.Integer, db.ForeignKey("result_assets.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    activity_id = db.Column(
        db.Integer, db.ForeignKey("activities.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    stage_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "stage": self.stage,
            "asset_id": self.asset_id,
            "activity_id": self.activity_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Agreement(db.Model):
    __tablename__ = "agreements"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    opportunity_id = db.Column(
        db.Integer, db.ForeignKey("uptake_opportunities.id", ondelete="SET NULL"),
        nullable=True,
    )
    asset_id = db.Column(
        db.Integer, db.ForeignKey("result_assets.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    activity_id = db.Column(
        db.Integer, db.ForeignKey("activities.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    signed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def signal_at(self):
        """When the agreement first counts as an uptake signal."""
        return self.signed_at or self.created_at
