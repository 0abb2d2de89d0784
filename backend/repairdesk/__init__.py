# backend/repairdesk/__init__.py
from flask import Flask, jsonify
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import InfrastructureError, RepairDeskError
from .extensions import db, migrate


def create_app(config_overrides=None) -> Flask:
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
    from .routes.clients import clients_bp
    from .routes.orders import orders_bp
    from .routes.tickets import tickets_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(clients_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(tickets_bp)

    register_error_handlers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app


def register_error_handlers(app: Flask) -> None:
    """
    JSON errors for anything a route did not translate itself.

    Typed errors keep their own status. Persistence failures become 503
    (retryable); anything else is logged and answered with a generic 500.
    """

    @app.errorhandler(RepairDeskError)
    def handle_repairdesk_error(e):
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({"error": e.description, "code": e.name.upper().replace(" ", "_")}), e.code

    @app.errorhandler(DBAPIError)
    @app.errorhandler(StaleDataError)
    def handle_persistence_error(e):
        db.session.rollback()
        app.logger.warning("Persistence failure: %s", type(e).__name__)
        err = InfrastructureError("Storage temporarily unavailable, retry the request")
        return jsonify({**err.to_dict(), "retryable": True}), err.http_status

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        db.session.rollback()
        app.logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500
