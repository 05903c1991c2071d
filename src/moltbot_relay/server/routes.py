"""HTTP and WebSocket route handlers."""

import time
from typing import TYPE_CHECKING

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import BaseRoute, Route, WebSocketRoute
from starlette.websockets import WebSocket

from moltbot_relay.exceptions import UpgradeRequiredError
from moltbot_relay.relay.proxy import upgrade_required_response

if TYPE_CHECKING:
    from moltbot_relay.service import RelayService

WS_HTTP_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_routes(service: "RelayService") -> list[BaseRoute]:
    """Create routes for the relay.

    The WebSocket path is served twice: WebSocket connections are relayed,
    plain HTTP requests to it get 426 Upgrade Required.

    Args:
        service: The configured RelayService

    Returns:
        List of Starlette routes
    """
    proxy = service.proxy
    ws_path = service.config.server.ws_path

    async def health(request: Request) -> Response:
        """Health check endpoint."""
        return JSONResponse(
            {
                "status": "ok",
                "timestamp": time.time(),
            }
        )

    async def ws_http(request: Request) -> Response:
        try:
            await proxy.handle_http(request)
        except UpgradeRequiredError:
            return upgrade_required_response()

    async def ws_relay(websocket: WebSocket) -> None:
        await proxy.handle(websocket)

    return [
        Route("/health", health, methods=["GET"]),
        # Any method without an upgrade is answered with 426
        Route(ws_path, ws_http, methods=WS_HTTP_METHODS),
        WebSocketRoute(ws_path, ws_relay),
    ]
