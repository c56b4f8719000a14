"""
Shared pytest fixtures for the CDE decision-support test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project: Pre-created Project entity
    - make_user / make_member / auth_headers: identity factories
    - allow_all / deny_all: injectable permission checkers
    - recording_sink: in-memory AuditSink
"""

import pytest

from cdeboard import create_app
from cdeboard.models import db as _db


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project():
    """A Horizon Europe project with default settings."""
    from cdeboard.models.project import Project

    proj = Project(name="Test Project", acronym="TEST", programme_profile="Horizon Europe")
    _db.session.add(proj)
    _db.session.commit()
    return proj


@pytest.fixture()
def make_user():
    from cdeboard.models.auth import User

    counter = {"n": 0}

    def _make(email=None):
        counter["n"] += 1
        user = User(email=email or f"user{counter['n']}@example.eu", full_name=f"User {counter['n']}")
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_member(make_user):
    """Create a user holding *role* in *project*; returns the User."""
    from cdeboard.models.auth import ProjectMember

    def _make(project, role="viewer"):
        user = make_user()
        _db.session.add(ProjectMember(project_id=project.id, user_id=user.id, role=role))
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def auth_headers():
    """Bearer header for a user id (token minted inside the app context)."""
    from cdeboard.services.jwt_service import generate_access_token

    def _headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user.id)}"}

    return _headers


@pytest.fixture()
def allow_all():
    return lambda user_id, project_id, permission: True


@pytest.fixture()
def deny_all():
    return lambda user_id, project_id, permission: False


class RecordingSink:
    """AuditSink that keeps events in memory."""

    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)
        return None


@pytest.fixture()
def recording_sink():
    return RecordingSink()


@pytest.fixture()
def build_ws():
    """Build an in-memory ProjectWorkingSet from transient model instances."""
    from cdeboard.models.project import Project
    from cdeboard.services.project_repository import ProjectWorkingSet

    fields = (
        "activities", "channels", "stakeholder_groups", "assets", "indicators",
        "indicator_values", "evidence_links", "objectives", "opportunities",
        "agreements", "survey_responses", "qualitative_outcomes",
    )

    def _build(**kwargs):
        data = {name: tuple(kwargs.pop(name, ())) for name in fields}
        proj = kwargs.pop("project", None) or Project(id=1, name="Transient", programme_profile="Horizon Europe")
        return ProjectWorkingSet(project=proj, **data, **kwargs)

    return _build
