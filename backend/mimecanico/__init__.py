# backend/mimecanico/__init__.py
from flask import Flask, request
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import WorkshopError
from .extensions import db, migrate
from .responses import fail, from_error


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.users import users_bp
    from .routes.clients import clients_bp
    from .routes.vehicles import vehicles_bp
    from .routes.inventory import inventory_bp
    from .routes.work_orders import work_orders_bp
    from .routes.budgets import budgets_bp
    from .routes.invoices import invoices_bp
    from .routes.parameters import parameters_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(clients_bp)
    app.register_blueprint(vehicles_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(work_orders_bp)
    app.register_blueprint(budgets_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(parameters_bp)

    @app.errorhandler(WorkshopError)
    def handle_workshop_error(exc):
        if exc.status_code >= 500:
            app.logger.error("%s: %s", type(exc).__name__, exc.message)
        return from_error(exc)

    @app.errorhandler(404)
    def handle_not_found(exc):
        return fail("Route not found", 404)

    @app.errorhandler(405)
    def handle_method_not_allowed(exc):
        return fail("Method not allowed", 405)

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        if isinstance(exc, HTTPException):
            return fail(exc.description or exc.name, exc.code or 500)
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        db.session.rollback()
        return fail("Server error", 500)

    @app.before_request
    def log_request():
        app.logger.info("%s %s", request.method, request.path)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
