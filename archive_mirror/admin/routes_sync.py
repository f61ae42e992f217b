"""
Admin API — On-demand sync endpoints.

Blueprint: sync_bp
Routes:
    POST /sync/<name>     # Start a sync in the background
    GET  /status          # Per-mirror sync status
"""

from __future__ import annotations

import logging

from flask import Blueprint, abort, current_app, jsonify

from ..errors import MirrorNotFound, SyncInProgress

sync_bp = Blueprint("sync", __name__)

logger = logging.getLogger(__name__)


def _syncer():
    return current_app.config["SYNCER"]


@sync_bp.route("/sync/<name>", methods=["POST"], provide_automatic_options=False)
def api_sync(name: str):
    """Start a sync and return at once; the outcome only shows in logs."""
    try:
        _syncer().start(name)
    except MirrorNotFound:
        logger.debug(f"Sync requested for unknown mirror '{name}'")
        abort(404)
    except SyncInProgress:
        logger.info(f"[{name}] Sync requested while already running")
        return "sync already in progress", 409
    except RuntimeError:
        # Executor shut down: the process is stopping
        return "shutting down", 503

    logger.info(f"[{name}] Sync triggered via admin API")
    return "sync started", 200


@sync_bp.route("/status", methods=["GET"])
def api_status():
    """Sync status of every mirror."""
    syncer = _syncer()
    mirrors = syncer.state.to_api_dict()
    for name, entry in mirrors.items():
        entry["syncing"] = syncer.is_syncing(name)
    return jsonify({"mirrors": mirrors})
