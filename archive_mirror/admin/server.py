"""
Admin Server — Flask app that triggers syncs on demand.

Every request must carry ``Authorization: Bearer <token>``. The check
runs before routing errors are raised, so an unauthenticated request
gets 403 whatever its path or method.
"""

from __future__ import annotations

import hmac
import logging
import time
from typing import TYPE_CHECKING

from flask import Flask, request

from .routes_sync import sync_bp

if TYPE_CHECKING:
    from ..mirror.pipeline import MirrorSyncer

logger = logging.getLogger(__name__)


def _token_matches(header: str, token: str) -> bool:
    # Werkzeug decodes header bytes as latin-1; encoding back recovers them.
    provided = header.encode("latin-1", errors="replace")
    expected = f"Bearer {token}".encode("utf-8")
    return hmac.compare_digest(provided, expected)


def create_app(syncer: "MirrorSyncer", token: str) -> Flask:
    """Create the admin Flask application."""

    app = Flask(__name__, static_folder=None)
    app.config["SYNCER"] = syncer
    app.config["ADMIN_TOKEN"] = token

    app.register_blueprint(sync_bp)

    # ── Error Handlers ────────────────────────────────────────────

    @app.errorhandler(404)
    def not_found(e):
        return "not found", 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return "method not allowed", 405, {"Allow": "POST"}

    @app.errorhandler(500)
    def internal_server_error(e):
        logger.exception(f"Unhandled 500 on {request.method} {request.path}")
        return "internal server error", 500

    # ── Auth + Request Logging ────────────────────────────────────

    @app.before_request
    def require_token():
        request._start_time = time.time()
        header = request.headers.get("Authorization", "")
        if not _token_matches(header, app.config["ADMIN_TOKEN"]):
            logger.info(f"Rejected {request.method} {request.path}: bad or missing token")
            return "forbidden", 403
        return None

    @app.after_request
    def log_request_end(response):
        duration_ms = 0
        if hasattr(request, "_start_time"):
            duration_ms = int((time.time() - request._start_time) * 1000)
        log_fn = logger.debug if request.path == "/status" else logger.info
        log_fn(f"{request.method} {request.path} → {response.status_code} ({duration_ms}ms)")
        return response

    logger.debug("Admin app initialized")
    return app
