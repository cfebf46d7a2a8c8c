"""Application factory for the SharePoint workflow backend."""
from __future__ import annotations

import time
import uuid

from flask import Flask, g, jsonify, request
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .config import Config
from .extensions import cors, db, limiter, notifier
from .logging_config import configure_logging
from .workflow.errors import WorkflowError


def create_app(config_class: type[Config] = Config) -> Flask:
    """Create and configure the Flask application instance."""
    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_logging(app)
    db.init_app(app)

    if cors is not None:
        allowed_origins = [
            origin.strip()
            for origin in (app.config.get("CORS_ALLOWED_ORIGINS") or "").split(",")
            if origin.strip()
        ]
        cors.init_app(
            app,
            resources={r"/api/*": {"origins": allowed_origins}},
            allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
            expose_headers=["X-Request-ID"],
        )

    limiter.init_app(app)
    notifier.init_app(app)

    from .api.auth import bp as auth_bp
    from .api.health import bp as health_bp
    from .api.logs import bp as logs_bp
    from .api.sharepoints import bp as sharepoints_bp

    app.register_blueprint(health_bp, url_prefix="/api")
    app.register_blueprint(logs_bp, url_prefix="/api")
    app.register_blueprint(sharepoints_bp, url_prefix="/api")
    app.register_blueprint(auth_bp, url_prefix="/api")

    _register_request_hooks(app)
    _register_error_handlers(app)

    with app.app_context():
        # Import models to ensure they are registered with SQLAlchemy before creating tables.
        from .models import auth, logs, sharepoint  # noqa: F401

        _initialize_database(app)

    return app


def _register_request_hooks(app: Flask) -> None:
    @app.before_request
    def _assign_request_id() -> None:
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _expose_request_id(response):
        response.headers["X-Request-ID"] = getattr(g, "request_id", "")
        return response


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(WorkflowError)
    def _workflow_error(exc: WorkflowError):
        response = jsonify(exc.to_dict())
        response.status_code = exc.status_code
        if exc.status_code == 401:
            response.headers["WWW-Authenticate"] = "Bearer"
        return response

    @app.errorhandler(SQLAlchemyError)
    def _database_error(exc: SQLAlchemyError):
        db.session.rollback()
        app.logger.exception("Database error while handling %s %s", request.method, request.path)
        return _internal_error()

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        if not request.path.startswith("/api/"):
            return exc
        return jsonify({"error": exc.description or exc.name}), exc.code

    @app.errorhandler(Exception)
    def _unexpected_error(exc: Exception):
        app.logger.exception("Unhandled error while handling %s %s", request.method, request.path)
        return _internal_error()


def _internal_error():
    return (
        jsonify({"error": "internal server error", "requestId": getattr(g, "request_id", None)}),
        500,
    )


def _initialize_database(app: Flask) -> None:
    """Initialize the database with retry logic to handle delayed availability."""

    max_retries = int(app.config.get("DB_INIT_MAX_RETRIES", 30))
    retry_delay = float(app.config.get("DB_INIT_RETRY_DELAY", 2))

    for attempt in range(1, max_retries + 1):
        try:
            db.create_all()
            return
        except OperationalError as exc:
            if attempt >= max_retries:
                app.logger.exception("Database initialization failed after %s attempts.", attempt)
                raise

            app.logger.warning(
                "Database initialization attempt %s/%s failed: %s", attempt, max_retries, exc
            )
            time.sleep(retry_delay)


__all__ = ["Config", "create_app"]
