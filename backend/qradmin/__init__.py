# backend/qradmin/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def _configure_logging(app: Flask) -> None:
    # app.logger is the "qradmin" logger; qradmin.* module loggers propagate to it
    app.logger.setLevel(str(app.config.get("LOG_LEVEL", "INFO")).upper())


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.users import users_bp
    from .routes.branches import branches_bp
    from .routes.qr_codes import qr_codes_bp
    from .routes.requests import requests_bp
    from .routes.merchants import merchants_bp
    from .routes.audit import audit_bp
    from .routes.dashboard import dashboard_bp
    from .routes.campaigns import campaigns_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(branches_bp)
    app.register_blueprint(qr_codes_bp)
    app.register_blueprint(requests_bp)
    app.register_blueprint(merchants_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(campaigns_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
