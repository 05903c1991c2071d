"""WebSocket relay between clients and the gateway."""

from moltbot_relay.relay.endpoints import (
    MemoryEndpoint,
    StarletteEndpoint,
    WebSocketsEndpoint,
    connect_websocket,
    socket_pair,
)
from moltbot_relay.relay.proxy import RelayProxy
from moltbot_relay.relay.session import RelaySession, SessionState
from moltbot_relay.relay.translator import (
    ERROR_MAPPINGS,
    ErrorMapping,
    transform_backend_text,
    translate_error_message,
    truncate_close_reason,
)

__all__ = [
    "ERROR_MAPPINGS",
    "ErrorMapping",
    "MemoryEndpoint",
    "RelayProxy",
    "RelaySession",
    "SessionState",
    "StarletteEndpoint",
    "WebSocketsEndpoint",
    "connect_websocket",
    "socket_pair",
    "transform_backend_text",
    "translate_error_message",
    "truncate_close_reason",
]
