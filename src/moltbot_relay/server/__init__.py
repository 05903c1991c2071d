"""HTTP server module."""

from moltbot_relay.server.app import create_app
from moltbot_relay.server.debug import create_debug_routes
from moltbot_relay.server.middleware import RequestIdMiddleware
from moltbot_relay.server.routes import create_routes

__all__ = [
    "RequestIdMiddleware",
    "create_app",
    "create_debug_routes",
    "create_routes",
]
