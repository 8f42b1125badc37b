"""
Accessibility Compliance Audit
Flask Application Factory.

Usage:
    from compliance_audit import create_app
    app = create_app()           # defaults to "development"
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

from compliance_audit.config import config
from compliance_audit.middleware.logging_config import configure_logging
from compliance_audit.middleware.rate_limiter import init_rate_limits
from compliance_audit.middleware.timing import init_request_timing
from compliance_audit.models import db

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
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL") or "memory://",
)


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
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 5 * 1024 * 1024)  # raw scanner output can be large

    # ── Import all models so Alembic can detect them ─────────────────────
    from compliance_audit.models import test_record as _test_record_models  # noqa: F401
    from compliance_audit.models import audit as _audit_models              # noqa: F401
    from compliance_audit.models import review_queue as _review_queue_models  # noqa: F401

    # ── Auto-create tables outside production (migrations own prod) ──────
    if config_name != "production":
        with app.app_context():
            try:
                db.create_all()
            except SQLAlchemyError as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from compliance_audit.blueprints.audit_trail_bp import audit_trail_bp
    from compliance_audit.blueprints.review_queue_bp import review_queue_bp
    from compliance_audit.blueprints.health_bp import health_bp

    app.register_blueprint(audit_trail_bp)
    app.register_blueprint(review_queue_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("escalate-overdue-reviews")
    def escalate_overdue_reviews_cmd():
        """Raise open review items past their SLA due date to critical."""
        if not app.config.get("REVIEW_ESCALATION_ENABLED", True):
            logger.info("Review escalation disabled (REVIEW_ESCALATION_ENABLED=false).")
            return
        from compliance_audit.services.review_queue_service import escalate_overdue_reviews
        escalated = escalate_overdue_reviews()
        logger.info("Escalated %s overdue review item(s).", len(escalated))

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
