"""
Content Server — Static file serving for one mirror's directory.

The directory is looked up on every request, so a snapshot swapped in
by the installer is served from the next request on.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from flask import Flask, abort, redirect, request, send_file, send_from_directory
from werkzeug.security import safe_join

logger = logging.getLogger(__name__)

INDEX_FILE = "index.html"


def create_content_app(name: str, root: Path) -> Flask:
    """Create a Flask app serving ``root`` for mirror ``name``."""

    app = Flask(f"{__name__}.{name}", static_folder=None)
    app.config["MIRROR_NAME"] = name
    app.config["CONTENT_ROOT"] = Path(root)

    @app.route("/", defaults={"path": ""}, methods=["GET", "HEAD"])
    @app.route("/<path:path>", methods=["GET", "HEAD"])
    def serve(path: str):
        content_root = str(app.config["CONTENT_ROOT"])
        target = safe_join(content_root, path) if path else content_root
        if target is None:
            abort(404)

        if os.path.isdir(target):
            if path and not path.endswith("/"):
                return redirect(request.path + "/", code=301)
            index = os.path.join(target, INDEX_FILE)
            if not os.path.isfile(index):
                abort(404)
            return send_file(index)

        return send_from_directory(content_root, path)

    @app.errorhandler(404)
    def not_found(e):
        return "not found", 404

    return app
