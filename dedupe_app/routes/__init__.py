"""
Dedupe routes package
"""

from .api import register_dedupe_api_routes


def init_routes(app):
    """Initialize dedupe routes"""
    register_dedupe_api_routes(app)
