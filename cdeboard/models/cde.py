"""
CDE Decision Support Platform
Communication / Dissemination / Exploitation domain models.

Models:
    - Channel:            outlet an activity is delivered through
    - StakeholderGroup:   audience targeted by activities
    - Activity:           one CDE action with effort / budget
    - ResultAsset:        project output disseminated and taken up
    - SurveyResponse:     engagement signal tied to an activity
    - QualitativeOutcome: logged outcome tied to an activity
"""

from datetime import datetime, timezone

from cdeboard.models import db

CDE_DOMAINS = ("communication", "dissemination", "exploitation")
PUBLIC_FACING_DOMAINS = frozenset({"communication", "dissemination"})
ACTIVITY_STATUSES = {"planned", "in_progress", "completed", "cancelled"}


def _utcnow():
    return datetime.now(timezone.utc)


activity_stakeholder_groups = db.Table(
    "activity_stakeholder_groups",
    db.Column(
        "activity_id", db.Integer,
        db.ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True,
    ),
    db.Column(
        "stakeholder_group_id", db.Integer,
        db.ForeignKey("stakeholder_groups.id", ondelete="CASCADE"), primary_key=True,
    ),
)


class Channel(db.Model):
    __tablename__ = "channels"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(
        db.String(50), nullable=False, default="other",
        comment="website | social_media | newsletter | event | press | publication | other",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self) -> dict:
        return {"id": self.id, "project_id": self.project_id, "name": self.name, "type": self.type}


class StakeholderGroup(db.Model):
    __tablename__ = "stakeholder_groups"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(50), nullable=True, comment="industry | policy | research | public | ...")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self) -> dict:
        return {"id": self.id, "project_id": self.project_id, "name": self.name, "category": self.category}


class ResultAsset(db.Model):
    __tablename__ = "result_assets"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    type = db.Column(
        db.String(50), nullable=False, default="other",
        comment="publication | dataset | software | guideline | training | other",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self) -> dict:
        return {"id": self.id, "project_id": self.project_id, "title": self.title, "type": self.type}


class Activity(db.Model):
    """
    A single CDE activity.

    ``effort_hours`` and ``budget_estimate`` feed the cost proxy; the
    optional channel / objective / asset references are the aggregation
    keys used by the decision-support engine.
    """

    __tablename__ = "activities"
    __table_args__ = (
        db.Index("idx_activity_project_domain", "project_id", "domain"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    domain = db.Column(
        db.String(20), nullable=False, default="communication",
        comment="communication | dissemination | exploitation",
    )
    status = db.Column(
        db.String(20), nullable=False, default="planned",
        comment="planned | in_progress | completed | cancelled",
    )
    effort_hours = db.Column(db.Float, nullable=True)
    budget_estimate = db.Column(db.Float, nullable=True)

    channel_id = db.Column(
        db.Integer, db.ForeignKey("channels.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    objective_id = db.Column(
        db.Integer, db.ForeignKey("objectives.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    asset_id = db.Column(
        db.Integer, db.ForeignKey("result_assets.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    stakeholder_groups = db.relationship(
        "StakeholderGroup",
        secondary=activity_stakeholder_groups,
        lazy="selectin",
    )

    @property
    def stakeholder_group_ids(self) -> list[int]:
        return [g.id for g in self.stakeholder_groups]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "domain": self.domain,
            "status": self.status,
            "effort_hours": self.effort_hours,
            "budget_estimate": self.budget_estimate,
            "channel_id": self.channel_id,
            "objective_id": self.objective_id,
            "asset_id": self.asset_id,
            "stakeholder_group_ids": self.stakeholder_group_ids,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }

    def __repr__(self):
        return f"<Activity {self.id}: {self.domain}/{self.title}>"


class SurveyResponse(db.Model):
    __tablename__ = "survey_responses"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    activity_id = db.Column(
        db.Integer, db.ForeignKey("activities.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    stakeholder_group_id = db.Column(
        db.Integer, db.ForeignKey("stakeholder_groups.id", ondelete="SET NULL"),
        nullable=True,
    )
    submitted_at = db.Column(db.DateTime(timezone=True), default=_utcnow)


class QualitativeOutcome(db.Model):
    __tablename__ = "qualitative_outcomes"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    activity_id = db.Column(
        db.Integer, db.ForeignKey("activities.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    stakeholder_group_id = db.Column(
        db.Integer, db.ForeignKey("stakeholder_groups.id", ondelete="SET NULL"),
        nullable=True,
    )
    description = db.Column(db.Text, nullable=True)
    recorded_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
