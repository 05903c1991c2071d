"""Moltbot Relay - WebSocket relay to a sandboxed Moltbot gateway."""

from moltbot_relay.concurrency import PollResult, SingleFlight, poll_until
from moltbot_relay.config import Config
from moltbot_relay.gateway import GatewayHandle, GatewayLifecycleManager
from moltbot_relay.observability import (
    LogLevel,
    RequestContext,
    StructuredLogger,
    Timer,
    configure_logging,
    emit_counter,
    emit_metric,
    emit_timer,
    get_logger,
    register_metric_callback,
)
from moltbot_relay.relay import RelayProxy, RelaySession, translate_error_message
from moltbot_relay.service import RelayService
from moltbot_relay.supervisor import ProcessSupervisor

__version__ = "0.1.0"
__all__ = [
    # Core
    "Config",
    "GatewayHandle",
    "GatewayLifecycleManager",
    "ProcessSupervisor",
    "RelayProxy",
    "RelayService",
    "RelaySession",
    "translate_error_message",
    # Concurrency
    "PollResult",
    "SingleFlight",
    "poll_until",
    # Observability
    "LogLevel",
    "RequestContext",
    "StructuredLogger",
    "Timer",
    "configure_logging",
    "emit_counter",
    "emit_metric",
    "emit_timer",
    "get_logger",
    "register_metric_callback",
]
