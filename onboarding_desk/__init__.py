"""
Counterparty Onboarding Desk
Flask Application Factory.

Usage:
    from onboarding_desk import create_app
    app = create_app()                                   # defaults to "development"
    app = create_app("testing")                          # explicit config
    app = create_app("testing", {"API_AUTH_ENABLED": "true"})   # per-app overrides
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from onboarding_desk.config import config
from onboarding_desk.middleware.jwt_auth import init_jwt_middleware
from onboarding_desk.middleware.logging_config import configure_logging
from onboarding_desk.middleware.rate_limiter import init_rate_limits
from onboarding_desk.middleware.timing import init_request_timing
from onboarding_desk.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit - apply per-blueprint
)


def create_app(config_name=None, overrides=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        overrides:   Optional mapping applied on top of the config class.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    if overrides:
        app.config.update(overrides)

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

    # ── Request timing + JWT context ─────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    @app.before_request
    def _guard_request():
        from flask import abort
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from onboarding_desk.models import account as _account_models        # noqa: F401
    from onboarding_desk.models import checklist as _checklist_models    # noqa: F401
    from onboarding_desk.models import onboarding as _onboarding_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if app.config.get("AUTO_CREATE_TABLES", True):
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from onboarding_desk.blueprints.accounts_bp import accounts_bp
    from onboarding_desk.blueprints.checklist_bp import checklist_bp
    from onboarding_desk.blueprints.health_bp import health_bp
    from onboarding_desk.blueprints.onboarding_bp import onboarding_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(checklist_bp)
    app.register_blueprint(onboarding_bp)
    app.register_blueprint(accounts_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-checklist-templates")
    def seed_checklist_templates_cmd():
        """Publish the default ONBOARDING / DEAL_PROCESSING checklist templates."""
        from onboarding_desk.services.checklist_template_service import seed_default_templates
        count = seed_default_templates()
        logger.info("Seeded %s new checklist templates.", count)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
