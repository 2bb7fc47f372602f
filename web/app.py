"""Flask application factory for the giveaway JSON API."""

from __future__ import annotations

from typing import Optional

from flask import Flask, Response, jsonify
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from werkzeug.routing import IntegerConverter

from core.logger import get_logger
from services.engine import GiveawayEngine
from utils.validators import SQLITE_INT_MAX
from web.config_middleware import apply_settings, install_request_metrics, install_response_headers
from web.routes import register_routes

logger = get_logger(__name__)


def create_app(config, engine: Optional[GiveawayEngine] = None, testing: bool = False) -> Flask:
    """Build the API app.

    ``engine`` is the service container the routes call into; when omitted
    they use the process-wide one registered by ``init_engine``.
    """
    app = Flask(__name__)
    apply_settings(app, config, testing)
    app.config["ENGINE"] = engine

    install_response_headers(app)
    install_request_metrics(app)
    app.url_map.converters["int"] = RowIdConverter
    register_routes(app)

    app.add_url_rule("/metrics", "metrics", _metrics)
    _register_fallback_errors(app)
    return app


class RowIdConverter(IntegerConverter):
    """``<int:...>`` limited to what SQLite can bind; larger ids simply match no route."""

    def __init__(self, map, *args, **kwargs):
        kwargs.setdefault("max", SQLITE_INT_MAX)
        super().__init__(map, *args, **kwargs)


def _metrics() -> Response:
    return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)


def _error(code: str, message: str, status: int):
    return jsonify({"ok": False, "code": code, "error": message}), status


def _register_fallback_errors(app: Flask) -> None:
    """JSON bodies for errors raised outside the API blueprint's own handler."""

    @app.errorhandler(404)
    def not_found(error):
        return _error("NOT_FOUND", "Not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return _error("METHOD_NOT_ALLOWED", "Method not allowed", 405)

    @app.errorhandler(413)
    def too_large(error):
        return _error("PAYLOAD_TOO_LARGE", "Request body too large", 413)

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Unhandled error in request: {error}")
        return _error("INTERNAL_ERROR", "Internal server error", 500)
