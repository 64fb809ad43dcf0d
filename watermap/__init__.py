"""
WaterMap Catalog
Flask Application Factory.

Usage:
    from watermap import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from watermap.config import config
from watermap.models import db
from watermap.auth import init_auth
from watermap.middleware.logging_config import configure_logging
from watermap.middleware.timing import init_request_timing
from watermap.middleware.security_headers import init_security_headers
from watermap.middleware.rate_limiter import init_rate_limits

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement (and ON DELETE SET NULL) for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
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
    app.config.from_object(config[config_name]())

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

    # ── Request guards (input length) ─────────────────────
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")

    # ── Authentication (sets g.current_user) ─────────────────────────────
    init_auth(app)

    # ── Security headers ─────────────────────────────────────────────────
    init_security_headers(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from watermap.models import auth as _auth_models                # noqa: F401
    from watermap.models import water_object as _water_object_models  # noqa: F401
    from watermap.models import change_log as _change_log_models    # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from watermap.blueprints.admin_bp import admin_bp
    from watermap.blueprints.catalog_bp import catalog_bp
    from watermap.blueprints.health_bp import health_bp
    from watermap.blueprints.water_object_bp import water_object_bp

    app.register_blueprint(water_object_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(health_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    from watermap.blueprints.errors import register_error_handlers
    register_error_handlers(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-users")
    @click.option("--admin-email", default="admin@watermap.kz", show_default=True)
    @click.option("--expert-email", default="expert@watermap.kz", show_default=True)
    def seed_users_cmd(admin_email, expert_email):
        """Create a demo admin and expert in the users mirror and print their tokens."""
        from watermap.models.auth import ROLE_ADMIN, ROLE_EXPERT, User
        from watermap.services.jwt_service import generate_access_token

        seeded = []
        for name, email, role in (
            ("Admin", admin_email, ROLE_ADMIN),
            ("Expert", expert_email, ROLE_EXPERT),
        ):
            user = User.query.filter_by(email=email).first()
            if user is None:
                user = User(name=name, email=email, role=role)
                db.session.add(user)
            seeded.append(user)
        db.session.commit()

        for user in seeded:
            logger.info("Seeded user %s (%s)", user.email, user.role)
            click.echo(f"{user.role:<7} {user.email}  {generate_access_token(user.id, user.role)}")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
