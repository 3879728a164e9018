"""
budget_revision/__init__.py

Flask application factory for the Budget Revision Manager.

Requirements:
- JSON API only; clients render their own UI.
- PostgreSQL-ready (SQLAlchemy + migrations) but SQLite is used for dev and tests.
- Clients are never trusted; server-side access control is enforced in the services.

Error mapping:
- BudgetError subclasses carry their own HTTP status (400 / 403 / 409 / 503).
- Unhandled SQLAlchemyError is rolled back and reported as 503.
- Werkzeug HTTP errors (404, 405, CSRF 400) are rendered as JSON as well.
"""

from __future__ import annotations

import click
from flask import Flask, jsonify
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .context import teardown_context
from .errors import BudgetError
from .extensions import csrf, db, login_manager, migrate
from .logging_config import configure_logging, get_logger
from .models import User

logger = get_logger(__name__)


def create_app(config_object: str | object = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login."""
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "unauthorized", "message": "Login required."}), 401

    app.teardown_appcontext(teardown_context)

    # ----------------------------------------------------------------------
    # Errors
    # ----------------------------------------------------------------------
    @app.errorhandler(BudgetError)
    def handle_budget_error(exc: BudgetError):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.__class__.__name__, exc.message)
        else:
            logger.info("%s: %s", exc.__class__.__name__, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_store_error(exc: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Unhandled store error")
        return jsonify({"error": "store_error", "message": str(exc)}), 503

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        code = (exc.name or "error").lower().replace(" ", "_")
        return jsonify({"error": code, "message": exc.description}), exc.code

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth import auth_bp
    from .blueprints.proposals import proposals_bp
    from .blueprints.reports import reports_bp
    from .blueprints.settings import settings_bp
    from .blueprints.users import users_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(proposals_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(users_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("seed-options")
    def seed_options_command():
        """Seed default classification lists."""
        from .seed import seed_default_options

        seed_default_options()
        click.echo("Default classification lists seeded.")

    @app.cli.command("recompute-summaries")
    def recompute_summaries_command():
        """Rebuild every unit summary from its proposal records."""
        from .services.summary import recompute_all

        count = recompute_all()
        click.echo(f"Recomputed {count} unit summaries.")

    # ----------------------------------------------------------------------
    # Home
    # ----------------------------------------------------------------------
    @app.route("/")
    def index():
        """Service banner plus the logged-in user, if any."""
        user = current_user.to_dict() if current_user.is_authenticated else None
        return jsonify({"app": app.config.get("APP_NAME"), "user": user})

    return app
