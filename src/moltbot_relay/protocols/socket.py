"""Socket endpoint protocol shared by client-facing and backend-facing sockets."""

from dataclasses import dataclass
from enum import IntEnum
from typing import Protocol, runtime_checkable


class ReadyState(IntEnum):
    """Connection state of one socket endpoint."""

    CONNECTING = 0
    OPEN = 1
    CLOSING = 2
    CLOSED = 3


@dataclass(frozen=True)
class MessageEvent:
    """A data frame, text or binary."""

    data: str | bytes

    @property
    def is_text(self) -> bool:
        return isinstance(self.data, str)


@dataclass(frozen=True)
class CloseEvent:
    """The remote side closed the connection."""

    code: int = 1000
    reason: str = ""


@dataclass(frozen=True)
class ErrorEvent:
    """The transport failed."""

    error: BaseException | None = None


SocketEvent = MessageEvent | CloseEvent | ErrorEvent


@runtime_checkable
class Endpoint(Protocol):
    """One side of a WebSocket connection.

    ``receive`` yields events in arrival order. A CloseEvent or ErrorEvent
    is terminal: the endpoint is CLOSED afterwards. ``close`` on an endpoint
    that is already closed is a no-op.
    """

    @property
    def ready_state(self) -> ReadyState:
        ...

    async def accept(self) -> None:
        """Complete the handshake so frames may flow."""
        ...

    async def receive(self) -> SocketEvent:
        """Wait for the next frame, close or error."""
        ...

    async def send(self, data: str | bytes) -> None:
        """Send a text or binary frame.

        Raises:
            RelaySessionError: If the transport fails while sending
        """
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the connection; idempotent."""
        ...
