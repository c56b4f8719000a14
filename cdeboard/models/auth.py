"""
CDE Decision Support Platform
Identity models: users and their per-project role.

Authentication itself is external; these tables only carry what the
permission collaborator needs to answer "may user X do Y in project Z".
"""

from datetime import datetime, timezone

from cdeboard.models import db

PROJECT_ROLES = ("viewer", "contributor", "cde_lead", "coordinator", "admin")


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {"id": self.id, "email": self.email, "full_name": self.full_name}

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


class ProjectMember(db.Model):
    """One role per (project, user) pair."""

    __tablename__ = "project_members"
    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_member"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    role = db.Column(
        db.String(20), nullable=False, default="viewer",
        comment="viewer | contributor | cde_lead | coordinator | admin",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "role": self.role,
        }
