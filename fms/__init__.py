"""
FMS Execution Engine
Flask Application Factory.

Usage:
    from fms import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from fms.config import config
from fms.middleware.logging_config import configure_logging
from fms.middleware.rate_limiter import init_rate_limits
from fms.middleware.timing import init_request_timing
from fms.models import db

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine  # noqa: E402


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
    default_limits=[],                     # no global limit — apply per-blueprint
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
    os.makedirs(app.instance_path, exist_ok=True)

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

    # ── Import all models so Alembic can detect them ─────────────────────
    from fms.models import user as _user_models             # noqa: F401
    from fms.models import template as _template_models     # noqa: F401
    from fms.models import project as _project_models       # noqa: F401
    from fms.models import objection as _objection_models   # noqa: F401
    from fms.models import score_log as _score_log_models   # noqa: F401
    from fms.models import outbox as _outbox_models         # noqa: F401

    # ── Outbox consumers (import registers @register_consumer handlers) ──
    from fms.services import outbox
    outbox.load_consumers()

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from fms.blueprints import ALL_BLUEPRINTS

    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("fms-dispatch-events")
    @click.option("--max-attempts", type=int, default=None,
                  help="Override FMS_OUTBOX_MAX_ATTEMPTS.")
    @click.option("--limit", type=int, default=100, show_default=True)
    def dispatch_events_cmd(max_attempts, limit):
        """Deliver pending outbox events and retry failed ones."""
        summary = outbox.dispatch_pending_events(max_attempts=max_attempts, limit=limit)
        click.echo(
            f"delivered={summary['delivered']} failed={summary['failed']} "
            f"exhausted={summary['exhausted']}"
        )

    @app.cli.command("fms-create-user")
    @click.argument("username")
    @click.option("--email", default=None)
    @click.option("--role", type=click.Choice(["admin", "user"]), default="user", show_default=True)
    def create_user_cmd(username, email, role):
        """Add a user that templates can assign steps to."""
        from fms.services.user_service import create_user
        user = create_user(username, email=email, role=role)
        click.echo(f"Created user id={user.id} username={user.username} role={user.role}")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        db.session.rollback()
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
