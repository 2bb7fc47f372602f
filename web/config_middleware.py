"""Flask settings plus the request hooks shared by every API route."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from flask import Flask, g, request
from prometheus_client import Counter, Histogram

from core.logger import get_logger

if TYPE_CHECKING:
    from config import Config

logger = get_logger(__name__)

API_LATENCY = Histogram(
    "giveaway_api_latency_seconds",
    "Giveaway API request latency by route template",
    ["method", "route"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5),
)
API_SERVER_ERRORS = Counter(
    "giveaway_api_server_errors_total",
    "Giveaway API responses with a 5xx status",
    ["method", "route"],
)

# Join and verify bodies are small JSON objects
MAX_BODY_BYTES = 64 * 1024


def apply_settings(app: Flask, config: Config, testing: bool = False) -> None:
    app.config.update(
        DEBUG=config.debug,
        TESTING=testing,
        MAX_CONTENT_LENGTH=MAX_BODY_BYTES,
        ADMIN_IDS=frozenset(config.admin_ids),
    )
    app.json.sort_keys = False

    if config.environment == "production" and not config.bot_configured:
        logger.warning("BOT_TOKEN is not set: required channels can never be confirmed")


def install_response_headers(app: Flask) -> None:
    """API responses carry user-specific ticket data and must never be cached or framed."""

    @app.after_request
    def harden(response):
        headers = response.headers
        headers.setdefault("X-Content-Type-Options", "nosniff")
        headers.setdefault("X-Frame-Options", "DENY")
        headers.setdefault("Cache-Control", "no-store")
        return response


def _route_template() -> str:
    # Label by template (/api/giveaways/<int:giveaway_id>) to keep cardinality bounded
    return getattr(request.url_rule, "rule", None) or "unmatched"


def install_request_metrics(app: Flask) -> None:
    @app.before_request
    def start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def record(response):
        route = _route_template()
        started = g.pop("request_started", None)
        if started is not None:
            API_LATENCY.labels(method=request.method, route=route).observe(time.perf_counter() - started)
        if response.status_code >= 500:
            API_SERVER_ERRORS.labels(method=request.method, route=route).inc()
        return response
