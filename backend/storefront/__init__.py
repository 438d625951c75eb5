# backend/storefront/__init__.py
from flask import Flask, jsonify, request

from .config import Config, validate_config
from .errors import StorefrontError, error_body
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None, dispatcher=None) -> Flask:
    """
    Application factory.

    config_overrides are applied before the extensions bind (tests pass an
    in-memory database here). dispatcher replaces the default logging
    notification dispatcher.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Refuse to start on unsafe configuration (e.g. auth bypass in production)
    validate_config(app.config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.notification_service import LoggingDispatcher
    app.extensions["notification_dispatcher"] = dispatcher or LoggingDispatcher()

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.orders import orders_bp
    from .routes.admin import admin_bp
    from .routes.payments import payments_bp, admin_payments_bp
    from .routes.pickup import pickup_bp
    from .routes.batches import batches_bp
    from .routes.cron import admin_maintenance_bp, cron_bp
    from .routes.notifications import notifications_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(admin_payments_bp)
    app.register_blueprint(pickup_bp)
    app.register_blueprint(batches_bp)
    app.register_blueprint(cron_bp)
    app.register_blueprint(admin_maintenance_bp)
    app.register_blueprint(notifications_bp)

    @app.errorhandler(StorefrontError)
    def handle_storefront_error(exc):
        return jsonify(error_body(exc)), exc.http_status

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
