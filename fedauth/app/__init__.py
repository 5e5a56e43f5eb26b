"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, which enables:
           - Multiple isolated test app instances, each with its own users
             and refresh tokens
           - `alembic upgrade` to import the models without starting a server

Responsibilities:
  1. Load configuration from config_by_name[config_name] (+ overrides)
  2. Configure logging
  3. Initialise the SQL extension when the relational user directory is used
  4. Build the gateway (user directory, token service, identity providers)
  5. Register all route blueprints under /api/v1
  6. Register global error handlers (AppError → JSON, Exception → 500)
"""

from __future__ import annotations

import logging
import traceback
from collections.abc import Mapping
from typing import Any

from flask import Flask, jsonify
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from fedauth.config import config_by_name, validate_production_config

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


# ── Application factory ────────────────────────────────────────────────────

def create_app(
    config_name: str = "development",
    config_overrides: Mapping[str, Any] | None = None,
) -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name:      One of "development", "testing", "production".
                          Resolved via config_by_name in config.py.
        config_overrides: Extra config values applied after the config
                          class (tests use this to pick a store or
                          register providers).

    Returns:
        A fully configured Flask app ready to serve requests.

    Raises:
        ValueError:               production config is missing or insecure
        StoreConfigurationError:  USER_STORE_TYPE names no known backend
    """
    app = Flask(__name__)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)
    if config_overrides:
        app.config.update(config_overrides)

    _configure_logging(app)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from fedauth.app.extensions import db, gateway

    if app.config.get("USER_STORE_TYPE") == "sql":
        db.init_app(app)
        # Populate SQLAlchemy's MetaData for create_all() and Alembic.
        with app.app_context():
            from fedauth.app.models import refresh_token, user  # noqa: F401

    gateway.init_app(app)

    # ── Blueprints ─────────────────────────────────────────────────────────
    _register_blueprints(app)

    # ── Error handlers ─────────────────────────────────────────────────────
    _register_error_handlers(app)

    app.logger.info(
        "%s started (store=%s, algorithm=%s).",
        app.config["APP_NAME"],
        app.config["USER_STORE_TYPE"],
        app.config["JWT_ALGORITHM"],
    )
    return app


def _configure_logging(app: Flask) -> None:
    level = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("fedauth").setLevel(level)
    app.logger.setLevel(level)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1/auth prefix.

    profile_bp is registered before auth_bp so its static paths are listed
    first; Werkzeug already ranks them above the /<provider_name> rules.
    """
    from fedauth.app.routes.auth import auth_bp
    from fedauth.app.routes.profile import profile_bp

    app.register_blueprint(profile_bp, url_prefix="/api/v1/auth")
    app.register_blueprint(auth_bp,    url_prefix="/api/v1/auth")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      ValidationError → marshmallow schema errors formatted as MISSING_FIELD /
                        INVALID_FIELD responses (400)
      HTTPException   → Werkzeug's own status (404, 405, ...) in the same envelope
      Exception       → generic INTERNAL_ERROR (500); full traceback logged

    Stack traces never leave the server.
    """
    from fedauth.app.errors import GENERIC_SERVER_MESSAGE, AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service, route) into the standard error envelope.
        """
        if error.http_status >= 500:
            app.logger.error("%r", error)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.
        Only the FIRST field error is reported.
        """
        messages = error.messages

        field = None
        raw_message = "Invalid input."
        code = ErrorCode.INVALID_FIELD

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None
                if isinstance(field_errors, list):
                    raw_message = field_errors[0] if field_errors else "Invalid value."
                else:
                    raw_message = str(field_errors)
                break
        elif isinstance(messages, list) and messages:
            raw_message = messages[0]

        if str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD

        response_body = {"error": {"code": code, "message": raw_message}}
        if field is not None:
            response_body["error"]["field"] = field
        return jsonify(response_body), 400

    http_codes = {
        404: ErrorCode.NOT_FOUND,
        405: ErrorCode.METHOD_NOT_ALLOWED,
    }

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        status = error.code or 500
        if status >= 500:
            code = ErrorCode.INTERNAL_ERROR
        else:
            code = http_codes.get(status, ErrorCode.BAD_REQUEST)
        return jsonify({
            "error": {
                "code": code,
                "message": error.description,
            }
        }), status

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.
        The full traceback is logged; the response carries no detail.
        """
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": GENERIC_SERVER_MESSAGE,
            }
        }), 500
