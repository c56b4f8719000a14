"""
CDE Decision Support Platform
Flask Application Factory.

Usage:
    from cdeboard import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from cdeboard.config import config
from cdeboard.core.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from cdeboard.middleware.jwt_auth import init_jwt_middleware
from cdeboard.middleware.logging_config import configure_logging
from cdeboard.middleware.rate_limiter import init_rate_limits
from cdeboard.middleware.timing import init_request_timing
from cdeboard.models import db
from cdeboard.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def _register_error_handlers(app):
    """Map engine exceptions and stock HTTP errors to ``api_error`` bodies."""

    @app.errorhandler(NotFoundError)
    def _not_found_error(e):
        logger.info("%s", e, extra={"project_id": e.project_id})
        return api_error(E.NOT_FOUND, f"{e.resource} not found")

    @app.errorhandler(ValidationError)
    def _validation_error(e):
        return api_error(E.VALIDATION_INVALID, str(e), status=422, details=e.details)

    @app.errorhandler(PermissionDeniedError)
    def _permission_denied(e):
        return api_error(E.FORBIDDEN, str(e), details={"required": e.permission})

    @app.errorhandler(SQLAlchemyError)
    def _database_error(e):
        db.session.rollback()
        logger.exception("Database error on %s %s", request.method, request.path)
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def _http_not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return {"error": "Method not allowed", "code": E.VALIDATION_INVALID}, 405

    @app.errorhandler(429)
    def _rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if uri.startswith("sqlite:///") and ":memory:" not in uri:
        sqlite_dir = os.path.dirname(uri[len("sqlite:///"):])
        if sqlite_dir:
            os.makedirs(sqlite_dir, exist_ok=True)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing + JWT identity ────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)  # 1 MB

    # ── Import all models so create_all / Alembic see them ───────────────
    from cdeboard.models import audit as _audit_models                # noqa: F401
    from cdeboard.models import auth as _auth_models                  # noqa: F401
    from cdeboard.models import cde as _cde_models                    # noqa: F401
    from cdeboard.models import compliance as _compliance_models      # noqa: F401
    from cdeboard.models import decision_support as _ds_models        # noqa: F401
    from cdeboard.models import monitoring as _monitoring_models      # noqa: F401
    from cdeboard.models import objective as _objective_models        # noqa: F401
    from cdeboard.models import project as _project_models            # noqa: F401
    from cdeboard.models import uptake as _uptake_models              # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from cdeboard.blueprints.audit_bp import audit_bp
    from cdeboard.blueprints.compliance_bp import compliance_bp
    from cdeboard.blueprints.decision_support_bp import decision_support_bp
    from cdeboard.blueprints.health_bp import health_bp

    app.register_blueprint(decision_support_bp)
    app.register_blueprint(compliance_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(health_bp)

    _register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
