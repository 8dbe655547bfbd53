# backend/compliance/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


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
    from .routes.stickers import stickers_bp
    from .routes.requests import requests_bp
    from .routes.tags import tags_bp
    from .routes.job_orders import job_orders_bp
    from .routes.payments import payments_bp
    from .routes.sync import sync_bp
    from .routes.delegations import delegations_bp
    from .routes.changes import changes_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(stickers_bp)
    app.register_blueprint(requests_bp)
    app.register_blueprint(tags_bp)
    app.register_blueprint(job_orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(delegations_bp)
    app.register_blueprint(changes_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "X-Actor-Id, X-On-Behalf-Of, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
