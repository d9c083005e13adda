# backend/tinytastes/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Service modules log under the package namespace
    logging.getLogger(__name__).setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Storefront core (ledger, reservations, state machine, sweeper)
    from .services.registry import init_services
    services = init_services(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.admin import admin_bp
    from .routes.orders import orders_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(orders_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config["PAYMENT_SWEEP_ENABLED"] and not app.testing:
        from .services.scheduler import PaymentSweepScheduler
        scheduler = PaymentSweepScheduler(
            app,
            services.sweeper,
            interval_seconds=app.config["PAYMENT_SWEEP_INTERVAL_SECONDS"],
        )
        scheduler.start()
        app.extensions["tinytastes.scheduler"] = scheduler

    return app
