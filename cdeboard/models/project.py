"""Project domain model: the anchor every CDE record hangs off."""

from datetime import datetime, timezone

from flask import current_app

from cdeboard.models import db

PROGRAMME_PROFILES = frozenset({
    "Horizon Europe",
    "Erasmus+",
    "Interreg",
    "Custom",
})


def _default_profile():
    return current_app.config.get("DEFAULT_PROGRAMME_PROFILE", "Horizon Europe")


class Project(db.Model):
    """An EU-funded project tracked by the dashboard."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    acronym = db.Column(db.String(50), nullable=True)
    programme_profile = db.Column(
        db.String(50), nullable=False, default=_default_profile,
        comment="Horizon Europe | Erasmus+ | Interreg | Custom",
    )
    # Raw decision-support settings as last written by the UI.  Never read
    # directly by the engine: always go through settings_resolver.
    settings_json = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    members = db.relationship(
        "ProjectMember", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "acronym": self.acronym,
            "programme_profile": self.programme_profile,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.acronym or self.name}>"
