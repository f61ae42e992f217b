"""
Content Server — Serves each mirror's current snapshot over HTTP.
"""

from .content import create_content_app

__all__ = ["create_content_app"]
