"""Application factory for the MES front-end console."""
from __future__ import annotations

from pathlib import Path

from flask import Flask, Response, jsonify

from .config import Config
from .extensions import init_app as init_extensions
from .services.api_client import ApiConfigurationError, ApiRequestError
from .auth import auth_bp
from .dashboard import dashboard_bp
from .production import production_bp


def create_app(config_object: type[Config] | Config | None = None) -> Flask:
    """Application factory used by Flask.

    Parameters
    ----------
    config_object: type[Config] | Config | None
        Optional configuration object to allow overriding defaults when
        creating the application.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config())
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    prepare_storage(app)
    register_extensions(app)
    register_blueprints(app)
    register_error_handlers(app)

    @app.route("/health")
    def health() -> tuple[str, int]:
        """Simple healthcheck endpoint."""
        return "OK", 200

    return app


def prepare_storage(app: Flask) -> None:
    """Ensure the directory holding the local store exists."""
    Path(app.config["MES_STORAGE_PATH"]).parent.mkdir(parents=True, exist_ok=True)


def register_extensions(app: Flask) -> None:
    """Create the per-application client, stores and tracker."""
    init_extensions(app)


def register_blueprints(app: Flask) -> None:
    """Register Flask blueprints."""
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(dashboard_bp, url_prefix="/dashboard")
    app.register_blueprint(production_bp, url_prefix="/production")


def register_error_handlers(app: Flask) -> None:
    """Translate backend failures into JSON error responses."""

    @app.errorhandler(ApiRequestError)
    def _api_request_error(exc: ApiRequestError) -> tuple[Response, int]:
        status = exc.status_code if exc.status_code and exc.status_code >= 400 else 502
        return jsonify({"error": exc.message}), status

    @app.errorhandler(ApiConfigurationError)
    def _api_configuration_error(exc: ApiConfigurationError) -> tuple[Response, int]:
        app.logger.error("Backend is not configured: %s", exc)
        return jsonify({"error": str(exc)}), 503
