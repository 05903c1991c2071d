"""Relay proxy: connects an incoming WebSocket to the gateway.

Handles everything before frames start flowing: the upgrade check,
making sure the gateway runs, and opening the gateway socket. Failures
at this stage reject the connection with an HTTP response; no relay
session is created.
"""

from collections.abc import Mapping
from typing import NoReturn

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.websockets import WebSocket

from moltbot_relay.exceptions import (
    BackendHandshakeError,
    GatewayStartError,
    SandboxError,
    UpgradeRequiredError,
)
from moltbot_relay.gateway import GatewayLifecycleManager
from moltbot_relay.observability import RequestContext, emit_counter, get_logger
from moltbot_relay.protocols.sandbox import SandboxBackend
from moltbot_relay.protocols.socket import Endpoint
from moltbot_relay.relay.endpoints import ABNORMAL_CLOSURE, StarletteEndpoint
from moltbot_relay.relay.session import RelaySession
from moltbot_relay.relay.translator import truncate_close_reason

logger = get_logger(__name__)

UPGRADE_REQUIRED_ERROR = "WebSocket upgrade required"
GATEWAY_START_ERROR = "Moltbot gateway failed to start"
GATEWAY_CONNECT_ERROR = "Failed to connect to Moltbot gateway"

DENIAL_EXTENSION = "websocket.http.response"

HOP_BY_HOP_HEADERS = frozenset({"content-length", "transfer-encoding", "connection", "upgrade"})


def is_websocket_upgrade(headers: Mapping[str, str]) -> bool:
    """Whether request headers ask for a WebSocket upgrade."""
    return headers.get("upgrade", "").lower() == "websocket"


def upgrade_required_response() -> JSONResponse:
    return JSONResponse({"error": UPGRADE_REQUIRED_ERROR}, status_code=426)


def request_host(headers: Mapping[str, str], fallback: str) -> str:
    """Host the client used, including a non-default port."""
    return headers.get("host") or fallback


class RelayProxy:
    """Accepts client WebSockets and relays them to the gateway.

    Example:
        proxy = RelayProxy(sandbox, gateway_manager, port=18789)
        await proxy.handle(websocket)
    """

    def __init__(
        self,
        sandbox: SandboxBackend,
        gateway: GatewayLifecycleManager,
        port: int,
    ) -> None:
        """Initialize relay proxy.

        Args:
            sandbox: Sandbox providing gateway sockets
            gateway: Lifecycle manager for the gateway process
            port: Gateway port inside the sandbox
        """
        self.sandbox = sandbox
        self.gateway = gateway
        self.port = port

    async def handle_http(self, request: Request) -> NoReturn:
        """Plain HTTP request to the WebSocket endpoint; never relayed.

        An upgrade the server did not perform still counts as missing.

        Raises:
            UpgradeRequiredError: Always
        """
        logger.info(
            "Rejecting non-WebSocket request",
            context={"path": request.url.path, "upgrade_header": is_websocket_upgrade(request.headers)},
        )
        raise UpgradeRequiredError(UPGRADE_REQUIRED_ERROR)

    async def handle(self, websocket: WebSocket) -> None:
        """Relay one client WebSocket until either side closes."""
        host = request_host(websocket.headers, websocket.url.netloc)
        async with RequestContext(host=host):
            logger.info(
                "Proxying WebSocket connection to Moltbot",
                context={"path": websocket.url.path, "has_query": bool(websocket.url.query)},
            )

            try:
                await self.gateway.ensure_running()
            except GatewayStartError as e:
                logger.error("Failed to start Moltbot", error=e)
                emit_counter("relay.rejected", {"reason": "gateway_start"})
                await self._deny(
                    websocket,
                    JSONResponse(
                        {"error": GATEWAY_START_ERROR, "details": e.details},
                        status_code=503,
                    ),
                )
                return

            try:
                backend = await self.connect_backend(websocket)
            except BackendHandshakeError as e:
                logger.warning(
                    "No WebSocket in gateway response, passing response through",
                    context={"status": e.status_code},
                )
                emit_counter("relay.rejected", {"reason": "handshake"})
                await self._deny(websocket, passthrough_response(e))
                return
            except SandboxError as e:
                logger.error("Failed to connect to gateway", error=e)
                emit_counter("relay.rejected", {"reason": "connect"})
                await self._deny(
                    websocket,
                    JSONResponse({"error": GATEWAY_CONNECT_ERROR, "details": str(e)}, status_code=502),
                )
                return

            session = RelaySession(StarletteEndpoint(websocket), backend, host=host)
            await session.run()

    async def connect_backend(self, websocket: WebSocket) -> Endpoint:
        """Open the gateway socket, forwarding path and query unchanged."""
        query = websocket.scope.get("query_string", b"").decode("latin-1")
        return await self.sandbox.ws_connect(
            self.port,
            path=websocket.url.path,
            query=query,
        )

    async def _deny(self, websocket: WebSocket, response: Response) -> None:
        """Reject the handshake with an HTTP response.

        Servers without the denial response extension get an accepted
        socket closed with 1011 and the error as reason instead.
        """
        if DENIAL_EXTENSION in (websocket.scope.get("extensions") or {}):
            await websocket.send_denial_response(response)
            return
        await websocket.accept()
        reason = response.body.decode("utf-8", errors="replace")
        await websocket.close(code=ABNORMAL_CLOSURE, reason=truncate_close_reason(reason))


def passthrough_response(error: BackendHandshakeError) -> Response:
    """The gateway's own HTTP response, unchanged."""
    response = Response(content=error.body, status_code=error.status_code)
    # Content-Length is recomputed for the body; hop-by-hop headers stay behind
    response.raw_headers.extend(
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in error.headers
        if name.lower() not in HOP_BY_HOP_HEADERS
    )
    return response
