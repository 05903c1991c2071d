"""ASGI application for standalone deployment."""

import contextlib
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware

from moltbot_relay.server.middleware import RequestIdMiddleware

if TYPE_CHECKING:
    from moltbot_relay.service import RelayService


def create_app(service: "RelayService") -> Starlette:
    """Create the ASGI application.

    Args:
        service: The configured RelayService

    Returns:
        Starlette application
    """
    from moltbot_relay.server.debug import create_debug_routes
    from moltbot_relay.server.routes import create_routes

    routes = create_routes(service)

    # Debug routes run arbitrary commands in the sandbox
    if service.config.debug.enabled:
        routes.extend(create_debug_routes(service))

    # Executed in reverse order: CORS -> request id -> route handler
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=service.config.server.cors_origins or ["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        ),
        Middleware(RequestIdMiddleware),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        yield
        await service.shutdown()

    return Starlette(
        routes=routes,
        middleware=middleware,
        lifespan=lifespan,
    )
