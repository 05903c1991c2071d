"""Socket endpoint adapters.

- StarletteEndpoint: the client-facing socket accepted by the ASGI app
- WebSocketsEndpoint: a backend socket opened with the websockets client
- socket_pair(): an in-memory full-duplex channel with two endpoints
"""

import asyncio

from starlette.websockets import WebSocket, WebSocketDisconnect
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    InvalidHandshake,
    InvalidStatus,
)

from moltbot_relay.exceptions import BackendHandshakeError, RelaySessionError, SandboxError
from moltbot_relay.observability import get_logger
from moltbot_relay.protocols.socket import (
    CloseEvent,
    ErrorEvent,
    MessageEvent,
    ReadyState,
    SocketEvent,
)

logger = get_logger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1011
NO_STATUS_RECEIVED = 1005

# Codes that can be observed locally but must never appear in a close frame
RESERVED_CLOSE_CODES = frozenset({1004, 1005, 1006, 1015})


def sendable_close_code(code: int | None) -> int:
    """Map an observed close code to one that may be sent to a peer."""
    if code is None or code == NO_STATUS_RECEIVED:
        return NORMAL_CLOSURE
    if code in RESERVED_CLOSE_CODES or not 1000 <= code <= 4999:
        return ABNORMAL_CLOSURE
    return code


class StarletteEndpoint:
    """Client-facing endpoint backed by a Starlette WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self._state = ReadyState.CONNECTING

    @property
    def ready_state(self) -> ReadyState:
        return self._state

    async def accept(self) -> None:
        await self.websocket.accept()
        self._state = ReadyState.OPEN

    async def receive(self) -> SocketEvent:
        if self._state == ReadyState.CLOSED:
            return CloseEvent(NORMAL_CLOSURE)
        try:
            message = await self.websocket.receive()
        except (RuntimeError, OSError) as e:
            self._state = ReadyState.CLOSED
            return ErrorEvent(e)

        if message["type"] == "websocket.disconnect":
            self._state = ReadyState.CLOSED
            return CloseEvent(
                code=message.get("code", NORMAL_CLOSURE),
                reason=message.get("reason") or "",
            )
        if message.get("text") is not None:
            return MessageEvent(message["text"])
        return MessageEvent(message.get("bytes") or b"")

    async def send(self, data: str | bytes) -> None:
        try:
            if isinstance(data, str):
                await self.websocket.send_text(data)
            else:
                await self.websocket.send_bytes(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._state = ReadyState.CLOSED
            raise RelaySessionError(f"Client send failed: {e}") from e

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self._state in (ReadyState.CLOSING, ReadyState.CLOSED):
            return
        self._state = ReadyState.CLOSING
        try:
            await self.websocket.close(code=code, reason=reason)
        except (RuntimeError, OSError) as e:
            logger.debug("Client already gone while closing", context={"error": str(e)})
        finally:
            self._state = ReadyState.CLOSED


class WebSocketsEndpoint:
    """Backend-facing endpoint backed by a websockets client connection.

    The connection is already open after the handshake; ``accept`` only
    marks it ready for relaying.
    """

    def __init__(self, connection: ClientConnection) -> None:
        self.connection = connection

    @property
    def ready_state(self) -> ReadyState:
        return ReadyState(int(self.connection.state))

    async def accept(self) -> None:
        return None

    async def receive(self) -> SocketEvent:
        try:
            data = await self.connection.recv()
        except ConnectionClosedOK as e:
            if e.rcvd is None:
                return CloseEvent(NORMAL_CLOSURE)
            return CloseEvent(code=e.rcvd.code, reason=e.rcvd.reason)
        except ConnectionClosed as e:
            if e.rcvd is not None:
                return CloseEvent(code=e.rcvd.code, reason=e.rcvd.reason)
            return ErrorEvent(e)
        except OSError as e:
            return ErrorEvent(e)
        return MessageEvent(data)

    async def send(self, data: str | bytes) -> None:
        try:
            await self.connection.send(data)
        except (ConnectionClosed, OSError) as e:
            raise RelaySessionError(f"Container send failed: {e}") from e

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self.ready_state == ReadyState.CLOSED:
            return
        await self.connection.close(code=code, reason=reason)


async def connect_websocket(
    url: str,
    headers: list[tuple[str, str]] | None = None,
    open_timeout: float = 30.0,
) -> WebSocketsEndpoint:
    """Open a backend WebSocket.

    Raises:
        BackendHandshakeError: If the server answered without upgrading
        SandboxError: If no connection could be made
    """
    try:
        connection = await connect(
            url,
            additional_headers=headers or None,
            open_timeout=open_timeout,
            # Relay frames of any size the gateway sends
            max_size=None,
        )
    except InvalidStatus as e:
        response = e.response
        raise BackendHandshakeError(
            status_code=response.status_code,
            headers=list(response.headers.raw_items()),
            body=response.body or b"",
        ) from e
    except (InvalidHandshake, OSError, TimeoutError) as e:
        raise SandboxError(f"Failed to connect to {url}: {e}") from e
    return WebSocketsEndpoint(connection)


class MemoryEndpoint:
    """One end of an in-memory socket pair."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.peer: "MemoryEndpoint | None" = None
        self.sent: list[str | bytes] = []
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self._inbox: asyncio.Queue[SocketEvent] = asyncio.Queue()
        self._state = ReadyState.CONNECTING
        self._terminal: SocketEvent | None = None

    def __repr__(self) -> str:
        return f"MemoryEndpoint({self.name!r}, {self._state.name})"

    @property
    def ready_state(self) -> ReadyState:
        return self._state

    async def accept(self) -> None:
        if self._state == ReadyState.CONNECTING:
            self._state = ReadyState.OPEN

    async def receive(self) -> SocketEvent:
        if self._terminal is not None and self._inbox.empty():
            return self._terminal
        event = await self._inbox.get()
        if isinstance(event, (CloseEvent, ErrorEvent)):
            self._state = ReadyState.CLOSED
            self._terminal = event
        return event

    async def send(self, data: str | bytes) -> None:
        if self._state != ReadyState.OPEN or self.peer is None:
            raise RelaySessionError(f"{self.name} is not open")
        self.sent.append(data)
        self.peer._inbox.put_nowait(MessageEvent(data))

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self._state in (ReadyState.CLOSING, ReadyState.CLOSED):
            return
        self._state = ReadyState.CLOSED
        self.close_code = code
        self.close_reason = reason
        event = CloseEvent(code=code, reason=reason)
        self._terminal = event
        if self.peer is not None and self.peer._state != ReadyState.CLOSED:
            self.peer._state = ReadyState.CLOSING
            self.peer._inbox.put_nowait(event)

    def fail(self, error: BaseException | None = None) -> None:
        """Simulate a transport error observed by this endpoint."""
        self._inbox.put_nowait(ErrorEvent(error))


def socket_pair() -> tuple[MemoryEndpoint, MemoryEndpoint]:
    """Create a full-duplex channel with two independently owned endpoints.

    Frames sent on one endpoint are received by the other; closing one
    delivers a CloseEvent to the other.
    """
    left = MemoryEndpoint("left")
    right = MemoryEndpoint("right")
    left.peer = right
    right.peer = left
    return left, right
