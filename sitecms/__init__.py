"""
Site CMS
Flask Application Factory.

Usage:
    from sitecms import create_app
    app = create_app()           # defaults to APP_ENV, else "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request, abort
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from sitecms.config import config
from sitecms.models import db
from sitecms.middleware.logging_config import configure_logging
from sitecms.middleware.timing import init_request_timing
from sitecms.middleware.jwt_auth import init_jwt_middleware
from sitecms.middleware.tenant_context import init_tenant_context
from sitecms.middleware.rate_limiter import init_rate_limits
from sitecms.services.jwt_service import init_token_blacklist
from sitecms.tenant import init_store_registry
from sitecms.utils.errors import register_error_handlers
from sitecms.utils.helpers import IdConverter

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


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
    default_limits=[],                     # no global limit; applied per blueprint
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
    app.url_map.converters["int"] = IdConverter
    app.config.from_object(config[config_name]())
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

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    # ── Lifecycle-owned objects ──────────────────────────────────────────
    init_store_registry(app)
    init_token_blacklist(app)

    # ── Middleware (order matters: timing → auth → tenant) ───────────────
    init_request_timing(app)
    init_jwt_middleware(app)
    init_tenant_context(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            if request.data and "json" not in (request.content_type or ""):
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so create_all / Alembic see them ───────────────
    from sitecms.models import auth as _auth_models          # noqa: F401
    from sitecms.models import content as _content_models    # noqa: F401
    from sitecms.models import menu as _menu_models          # noqa: F401
    from sitecms.models import audit as _audit_models        # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) and built-in roles ─────
    from sitecms.services.user_service import seed_roles

    with app.app_context():
        db.create_all()
        seed_roles()
        db.session.commit()

    # ── Blueprints ───────────────────────────────────────────────────────
    from sitecms.blueprints.health_bp import health_bp
    from sitecms.blueprints.auth_bp import auth_bp
    from sitecms.blueprints.sites_bp import sites_bp
    from sitecms.blueprints.users_bp import users_bp
    from sitecms.blueprints.content_types_bp import content_types_bp
    from sitecms.blueprints.terms_bp import terms_bp
    from sitecms.blueprints.posts_bp import posts_bp
    from sitecms.blueprints.menus_bp import menus_bp
    from sitecms.blueprints.media_bp import media_bp
    from sitecms.blueprints.settings_bp import settings_bp
    from sitecms.blueprints.activity_bp import activity_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(sites_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(content_types_bp)
    app.register_blueprint(terms_bp)
    app.register_blueprint(posts_bp)
    app.register_blueprint(menus_bp)
    app.register_blueprint(media_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(activity_bp)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    _register_cli(app)
    return app


def _register_cli(app):
    @app.cli.command("seed-roles")
    def seed_roles_cmd():
        """Create any missing built-in roles."""
        from sitecms.services.user_service import seed_roles

        count = seed_roles()
        db.session.commit()
        click.echo(f"Seeded {count} built-in roles.")

    @app.cli.command("create-site")
    @click.argument("name")
    @click.argument("display_name")
    @click.option("--domain", default=None, help="Primary domain of the site.")
    def create_site_cmd(name, display_name, domain):
        """Create and provision a site with default content types."""
        from sitecms.services.site_service import create_site

        site = create_site({"name": name, "display_name": display_name, "domain": domain})
        db.session.commit()
        click.echo(f"Site {site.name} created (id={site.id}).")

    @app.cli.command("publish-scheduled")
    def publish_scheduled_cmd():
        """Publish due scheduled posts on every active site."""
        from sitecms.services.post_service import publish_due_posts_everywhere

        results = publish_due_posts_everywhere()
        click.echo(f"Published {sum(results.values())} post(s) across {len(results)} site(s).")

    @app.cli.command("create-super-admin")
    @click.argument("username")
    @click.argument("email")
    @click.password_option()
    def create_super_admin_cmd(username, email, password):
        """Create a super-admin user."""
        from sitecms.services.user_service import create_user

        user = create_user(None, {
            "username": username, "email": email, "password": password, "role": "super_admin",
        })
        user.is_super_admin = True
        db.session.commit()
        click.echo(f"Super-admin {user.username} created (id={user.id}).")
