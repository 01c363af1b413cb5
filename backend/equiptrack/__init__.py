# backend/equiptrack/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.allocations import allocations_bp
    from .routes.events import events_bp
    from .routes.sites import sites_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(allocations_bp)
    app.register_blueprint(events_bp)
    app.register_blueprint(sites_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
