"""Relay session: forwards frames between a client socket and the gateway.

States: negotiating -> both_accepted -> relaying -> closing -> closed.

Two tasks run while relaying, one per direction. Each consumes events
from its source endpoint and writes to the other. The first close or
error on either side moves the session to closing, propagates exactly
once to the other side, and sets the shared stop event so the other
task ends too.
"""

import asyncio
import uuid
from enum import Enum

from moltbot_relay.exceptions import RelaySessionError
from moltbot_relay.observability import RequestContext, emit_counter, get_logger
from moltbot_relay.protocols.socket import (
    CloseEvent,
    Endpoint,
    ErrorEvent,
    MessageEvent,
    ReadyState,
    SocketEvent,
)
from moltbot_relay.relay.endpoints import (
    ABNORMAL_CLOSURE,
    NORMAL_CLOSURE,
    sendable_close_code,
)
from moltbot_relay.relay.translator import translate_close_reason, transform_backend_text

logger = get_logger(__name__)

CLIENT_ERROR_REASON = "Client error"
CONTAINER_ERROR_REASON = "Container error"

LOG_PREVIEW_CHARS = 200


class SessionState(str, Enum):
    """Relay session states."""

    NEGOTIATING = "negotiating"
    BOTH_ACCEPTED = "both_accepted"
    RELAYING = "relaying"
    CLOSING = "closing"
    CLOSED = "closed"


class Side(str, Enum):
    """Which socket of the session an event came from."""

    CLIENT = "client"
    CONTAINER = "container"


def _preview(data: str | bytes) -> str:
    if isinstance(data, bytes):
        return f"(binary, {len(data)} bytes)"
    return data[:LOG_PREVIEW_CHARS]


class RelaySession:
    """One client socket paired with one gateway socket.

    Example:
        session = RelaySession(client, backend, host="bot.example.com")
        await session.run()
    """

    def __init__(
        self,
        client: Endpoint,
        backend: Endpoint,
        host: str,
        session_id: str | None = None,
    ) -> None:
        """Initialize relay session.

        Args:
            client: Client-facing endpoint (not yet accepted)
            backend: Gateway-facing endpoint (not yet accepted)
            host: Host the client connected through, used in error text
            session_id: Identifier for log context
        """
        self.client = client
        self.backend = backend
        self.host = host
        self.session_id = session_id or f"relay-{uuid.uuid4().hex[:12]}"
        self.state = SessionState.NEGOTIATING
        self._stop = asyncio.Event()

    def _endpoint(self, side: Side) -> Endpoint:
        return self.client if side == Side.CLIENT else self.backend

    def _peer(self, side: Side) -> Endpoint:
        return self.backend if side == Side.CLIENT else self.client

    async def accept(self) -> None:
        """Accept both endpoints; no frame flows before this completes."""
        await self.backend.accept()
        await self.client.accept()
        self.state = SessionState.BOTH_ACCEPTED
        logger.debug(
            "Both WebSockets accepted",
            context={
                "client_state": self.client.ready_state.name,
                "container_state": self.backend.ready_state.name,
            },
        )

    async def run(self) -> None:
        """Accept both sides and relay until either side closes or fails.

        Never raises for transport failures; they end the session.
        """
        with RequestContext(relay_session_id=self.session_id, host=self.host):
            if self.state == SessionState.NEGOTIATING:
                await self.accept()

            self.state = SessionState.RELAYING
            emit_counter("relay.session_started")
            tasks = [
                asyncio.create_task(self._pump(Side.CLIENT), name=f"{self.session_id}-client"),
                asyncio.create_task(self._pump(Side.CONTAINER), name=f"{self.session_id}-container"),
            ]
            try:
                await self._stop.wait()
            finally:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                # Covers cancellation of run() itself
                await self._close_both()
            logger.info("Relay session closed")

    async def _pump(self, side: Side) -> None:
        source = self._endpoint(side)
        try:
            while not self._stop.is_set():
                event = await source.receive()
                if isinstance(event, MessageEvent):
                    await self._forward(side, event)
                else:
                    await self._terminate(side, event)
                    return
        except Exception as e:
            await self._terminate(side, ErrorEvent(e))

    async def _forward(self, side: Side, event: MessageEvent) -> None:
        target = self._peer(side)
        data = event.data
        if side == Side.CONTAINER and isinstance(data, str):
            data = transform_backend_text(data, self.host)
            if data != event.data:
                logger.info("Translated gateway error message", context={"message": _preview(data)})

        if target.ready_state != ReadyState.OPEN:
            logger.debug(
                "Dropping frame, peer not open",
                context={"from": side.value, "peer_state": target.ready_state.name},
            )
            emit_counter("relay.frame_dropped", {"from": side.value})
            return

        logger.debug(
            "Forwarding frame",
            context={"from": side.value, "data": _preview(data)},
        )
        try:
            await target.send(data)
        except RelaySessionError as e:
            # The target failed, not the source
            other = Side.CONTAINER if side == Side.CLIENT else Side.CLIENT
            await self._terminate(other, ErrorEvent(e))
            return
        except UnicodeError as e:
            # Unsendable frame; neither socket failed
            logger.warning(
                "Dropping frame that cannot be encoded",
                context={"from": side.value},
                error=e,
            )
            emit_counter("relay.frame_dropped", {"from": side.value})
            return
        emit_counter("relay.frame_forwarded", {"from": side.value})

    async def _terminate(self, side: Side, event: SocketEvent) -> None:
        """Propagate the first close/error to the other side, once."""
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        self.state = SessionState.CLOSING
        peer = self._peer(side)

        try:
            if isinstance(event, CloseEvent):
                code = sendable_close_code(event.code)
                reason = event.reason
                if side == Side.CONTAINER:
                    reason = translate_close_reason(reason, self.host)
                logger.info(
                    f"{side.value.capitalize()} closed",
                    context={"code": event.code, "reason": event.reason, "forwarded_reason": reason},
                )
                await peer.close(code, reason)
            else:
                reason = CLIENT_ERROR_REASON if side == Side.CLIENT else CONTAINER_ERROR_REASON
                error = event.error if isinstance(event, ErrorEvent) else None
                logger.error(f"{side.value.capitalize()} error", error=error)
                emit_counter("relay.session_error", {"side": side.value})
                await peer.close(ABNORMAL_CLOSURE, reason)
        except (RelaySessionError, OSError, RuntimeError) as e:
            logger.warning("Failed to propagate close", context={"to": peer.ready_state.name}, error=e)
        finally:
            self._stop.set()

    async def _close_both(self) -> None:
        # Anything still open here was not closed by a peer event
        code = NORMAL_CLOSURE if self.state == SessionState.CLOSING else ABNORMAL_CLOSURE
        for endpoint in (self.client, self.backend):
            if endpoint.ready_state == ReadyState.CLOSED:
                continue
            try:
                await endpoint.close(code)
            except (RelaySessionError, OSError, RuntimeError) as e:
                logger.debug("Endpoint close failed", context={"error": str(e)})
        self.state = SessionState.CLOSED
