"""Protocol interfaces for the sandbox and socket endpoints."""

from moltbot_relay.protocols.sandbox import (
    HttpResponse,
    Process,
    ProcessLogs,
    ProcessStatus,
    SandboxBackend,
)
from moltbot_relay.protocols.socket import (
    CloseEvent,
    Endpoint,
    ErrorEvent,
    MessageEvent,
    ReadyState,
    SocketEvent,
)

__all__ = [
    "CloseEvent",
    "Endpoint",
    "ErrorEvent",
    "HttpResponse",
    "MessageEvent",
    "Process",
    "ProcessLogs",
    "ProcessStatus",
    "ReadyState",
    "SandboxBackend",
    "SocketEvent",
]
