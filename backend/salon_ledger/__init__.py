# backend/salon_ledger/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate
from .decorators import error_response
from .validation import LedgerError


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.cash import cash_bp
    from .routes.invoices import invoices_bp
    from .routes.statistics import statistics_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(cash_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(statistics_bp)

    # Domain errors that escape a route still get the structured body
    app.register_error_handler(LedgerError, error_response)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = set(app.config.get("CORS_ORIGINS", []))
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Tenant-Id, X-Actor"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
