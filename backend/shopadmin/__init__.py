# backend/shopadmin/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate
from .jobs import jobs


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    if app.config.get("TESTING") and "MAIL_SUPPRESS_SEND" not in (config_overrides or {}):
        app.config["MAIL_SUPPRESS_SEND"] = True

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jobs.init_app(app)
    app.extensions["mail_outbox"] = []

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.products import products_bp
    from .routes.categories import categories_bp
    from .routes.customers import customers_bp
    from .routes.purchases import purchases_bp
    from .routes.audit_logs import audit_logs_bp
    from .routes.scheduler import scheduler_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(categories_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(audit_logs_bp)
    app.register_blueprint(scheduler_bp)

    @app.errorhandler(500)
    def internal_error(error):
        # Flask has already logged the original exception
        return {"error": "Internal server error"}, 500

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
