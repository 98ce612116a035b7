"""
projectledger/__init__.py

Flask application factory for the Project Ledger API.

Areas:
- vendors, purchase orders, invoices, expenses and budgets under
  /api/developer-dashboard
- attachment uploads and quota under /api/storage
- bearer-token login under /api/auth

Every response is JSON. Permissions are enforced server-side; the global
viewer guard is a safety net, each route still checks its own rights.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import click
from flask import Flask, jsonify

from .errors import register_error_handlers
from .extensions import db, login_manager, migrate
from .models import User
from .security import load_user_from_request, viewer_readonly_guard

# Blueprint imports kept inside create_app() where possible to reduce import side effects.


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("projectledger").setLevel(level)
    app.logger.setLevel(level)


def create_app(
    config_object: str | object = "config.Config",
    overrides: Optional[Mapping[str, Any]] = None,
) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)
    if overrides:
        app.config.update(overrides)

    _configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login."""
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    login_manager.request_loader(load_user_from_request)

    @login_manager.unauthorized_handler
    def _unauthorized():
        return jsonify({"error": "Authentication required"}), 401

    # ----------------------------------------------------------------------
    # GLOBAL SECURITY NET: Viewer read-only guard (server-side).
    # ----------------------------------------------------------------------
    @app.before_request
    def _viewer_guard_hook():
        """Viewer read-only enforcement (POST/PUT/PATCH/DELETE blocked)."""
        return viewer_readonly_guard()

    register_error_handlers(app)

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth import auth_bp
    from .blueprints.invoices import invoices_bp
    from .blueprints.projects import projects_bp
    from .blueprints.purchase_orders import purchase_orders_bp
    from .blueprints.storage import storage_bp
    from .blueprints.vendors import vendors_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(projects_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(vendors_bp)
    app.register_blueprint(storage_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("create-db")
    def create_db_command():
        """Create all tables (development without migrations)."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("seed-demo")
    def seed_demo_command():
        """Seed a demo tenant, users, project, budget and vendors."""
        from .seed import seed_demo

        summary = seed_demo()
        click.echo(f"Demo data seeded: {summary}")

    @app.cli.command("create-user")
    @click.option("--customer", "customer_name", required=True, help="Tenant name (created if missing).")
    @click.option("--email", required=True)
    @click.option("--password", required=True)
    @click.option("--name", default=None)
    @click.option("--role", default="owner", show_default=True)
    def create_user_command(customer_name, email, password, name, role):
        """Create a user for a tenant."""
        from .seed import create_user

        user = create_user(customer_name, email, password, name=name, role=role)
        click.echo(f"User {user.email} ({user.role.value}) ready.")

    @app.route("/api/health")
    def health():
        return jsonify({"status": "ok", "app": app.config.get("APP_NAME")})

    return app
