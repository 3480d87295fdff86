"""Flask application factory for the incident dispatch engine."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

from flask import Flask, jsonify, request
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import DispatchError
from .extensions import db, init_extensions


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.getLogger().setLevel(level)
    app.logger.setLevel(level)

    log_file = app.config.get("LOG_FILE")
    if log_file and not any(isinstance(h, RotatingFileHandler) for h in app.logger.handlers):
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handler.setLevel(level)
        logging.getLogger().addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    """Register all API blueprints used by the project."""
    from .devices import bp as devices_bp
    from .incidents import bp as incidents_bp
    from .ops import bp as ops_bp
    from .realtime import bp as realtime_bp

    app.register_blueprint(incidents_bp)
    app.register_blueprint(ops_bp)
    app.register_blueprint(devices_bp)
    app.register_blueprint(realtime_bp)


def _register_common_routes(app: Flask) -> None:
    @app.get("/health")
    def health():
        return ("", 204)

    @app.get("/ready")
    def ready():
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError:
            app.logger.warning("readiness check failed", exc_info=True)
            return jsonify(status="unavailable"), 503
        finally:
            db.session.rollback()
        return jsonify(status="ok"), 200


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(DispatchError)
    def _dispatch_error(err: DispatchError):
        if err.http_status >= 500:
            app.logger.warning("%s %s -> %s", request.method, request.path, err.message)
        return jsonify(err.to_dict()), err.http_status

    @app.errorhandler(SchemaValidationError)
    def _schema_error(err: SchemaValidationError):
        details = err.errors(include_url=False, include_context=False)
        return jsonify(error="validation_error", message="invalid request body", details=details), 400

    @app.errorhandler(HTTPException)
    def _http_error(err: HTTPException):
        if request.path.startswith("/api/"):
            code = (err.name or "error").lower().replace(" ", "_")
            return jsonify(error=code, message=err.description), err.code
        return err


def _apply_security_headers(app: Flask) -> None:
    @app.after_request
    def _set_headers(resp):
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "same-origin")
        return resp


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_class)
    _configure_logging(app)

    # Blueprints first: /ws must be declared on ``sock`` before sock.init_app().
    _register_blueprints(app)
    init_extensions(app)

    with app.app_context():
        from . import models  # noqa: F401
        db.create_all()

    from .realtime.hub import init_hub
    init_hub(app)

    from .commands import create_unit, issue_token
    app.cli.add_command(create_unit)
    app.cli.add_command(issue_token)

    _register_common_routes(app)
    _register_error_handlers(app)
    _apply_security_headers(app)
    return app
