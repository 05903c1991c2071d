"""Moltbot relay exceptions."""


class RelayError(Exception):
    """Base exception for moltbot-relay."""

    pass


class ConfigError(RelayError):
    """Configuration error."""

    pass


class SandboxError(RelayError):
    """Sandbox operation error."""

    pass


class SpawnError(SandboxError):
    """The sandbox rejected a process start request."""

    pass


class LogRetrievalError(SandboxError):
    """The sandbox could not return logs for a process."""

    pass


class ProcessNotFoundError(SandboxError):
    """Process not known to the sandbox."""

    pass


class GatewayStartError(RelayError):
    """The gateway process could not be brought to a running state."""

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.details = details or message


class UpgradeRequiredError(RelayError):
    """Request to a WebSocket endpoint without an upgrade header."""

    pass


class BackendHandshakeError(RelayError):
    """The gateway answered the socket request with a plain HTTP response.

    The response is kept so it can be returned to the client unchanged.
    """

    def __init__(
        self,
        status_code: int,
        headers: list[tuple[str, str]] | None = None,
        body: bytes = b"",
    ) -> None:
        super().__init__(f"Gateway declined WebSocket upgrade with status {status_code}")
        self.status_code = status_code
        self.headers = headers or []
        self.body = body


class RelaySessionError(RelayError):
    """Transport error on one side of a relay session."""

    pass
