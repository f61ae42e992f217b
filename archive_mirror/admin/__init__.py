"""
Admin Server — Authenticated HTTP endpoint for on-demand syncs.

    POST /sync/<name>   Authorization: Bearer <token>
"""

from .server import create_app

__all__ = ["create_app"]
